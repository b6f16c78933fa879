from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any, Literal

from tenantmigrate.domain.state import OwnerStage


OutcomeCategory = Literal["migrated", "partial", "untouched", "skipped"]


@dataclass
class OwnerOutcome:
    # Mutable while the owner pipeline runs so a timeout still reports the stage reached.
    owner_id: int
    email: str
    state: OwnerStage = OwnerStage.PENDING
    reached: OwnerStage = OwnerStage.PENDING
    failed_stage: str | None = None
    database_name: str | None = None
    counts: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    # Stage label currently executing (provision, registry, data:<kind>).
    in_progress: str | None = None

    def advance(self, stage: OwnerStage) -> None:
        self.state = stage
        self.reached = stage

    def fail(self, stage: str, error: str) -> None:
        # The first failing stage is kept; later data-kind failures only add errors.
        if self.failed_stage is None:
            self.failed_stage = stage
        self.state = OwnerStage.FAILED
        self.errors.append(f"{stage}: {error}")

    @property
    def category(self) -> OutcomeCategory:
        if self.state == OwnerStage.SKIPPED:
            return "skipped"
        if self.state == OwnerStage.DONE:
            return "migrated"
        if self.reached == OwnerStage.PENDING:
            return "untouched"
        return "partial"

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "email": self.email,
            "state": self.state.value,
            "reached": self.reached.value,
            "category": self.category,
            "failed_stage": self.failed_stage,
            "database_name": self.database_name,
            "counts": dict(self.counts),
            "errors": list(self.errors),
        }


@dataclass
class MigrationReport:
    outcomes: list[OwnerOutcome] = field(default_factory=list)

    def by_category(self, category: OutcomeCategory) -> list[OwnerOutcome]:
        return [outcome for outcome in self.outcomes if outcome.category == category]

    @property
    def has_failures(self) -> bool:
        return any(outcome.state == OwnerStage.FAILED for outcome in self.outcomes)

    def totals(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for outcome in self.outcomes:
            for kind, count in outcome.counts.items():
                totals[kind] = totals.get(kind, 0) + count
        return totals

    def summary(self) -> dict[str, int]:
        return {
            "owners": len(self.outcomes),
            "migrated": len(self.by_category("migrated")),
            "partial": len(self.by_category("partial")),
            "untouched": len(self.by_category("untouched")),
            "skipped": len(self.by_category("skipped")),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary(),
            "totals": self.totals(),
            "owners": [outcome.to_dict() for outcome in self.outcomes],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    def render_lines(self) -> list[str]:
        # key=value lines, one per owner, followed by the run summary.
        lines: list[str] = []
        for outcome in self.outcomes:
            counts = ",".join(f"{kind}:{count}" for kind, count in outcome.counts.items()) or "-"
            line = (
                f"owner_id={outcome.owner_id} email={outcome.email} state={outcome.state.value} "
                f"category={outcome.category} database={outcome.database_name or '-'} counts={counts}"
            )
            if outcome.failed_stage:
                line += f" failed_stage={outcome.failed_stage}"
            if outcome.category == "skipped":
                # Copy results for these owners live in the report of the run that registered them.
                line += f" reached={outcome.reached.value} registered_earlier=true"
            lines.append(line)
            lines.extend(f"  error={error}" for error in outcome.errors)
        summary = " ".join(f"{key}={value}" for key, value in self.summary().items())
        lines.append(f"summary {summary}")
        return lines
