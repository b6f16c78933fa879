from __future__ import annotations

import argparse
import asyncio
import sys

from tenantmigrate.core.config import get_settings
from tenantmigrate.core.log import configure_logging
from tenantmigrate.persistence.db import open_store_handles
from tenantmigrate.services.orchestrator import run_migration
from tenantmigrate.services.provisioning import (
    StorageProvisioner,
    build_storage_admin,
    ensure_central_registry,
)


async def _migrate(owner_ids: list[int] | None, as_json: bool) -> int:
    # Split the shared store into one tenant store per owner and print the outcome report.
    settings = get_settings()
    admin = build_storage_admin(settings)
    try:
        async with open_store_handles(settings) as handles:
            if settings.central_auto_create:
                await ensure_central_registry(admin, handles.central_engine)
            report = await run_migration(handles, StorageProvisioner(admin), owner_ids=owner_ids)
    finally:
        await admin.dispose()
    if as_json:
        print(report.to_json())
    else:
        for line in report.render_lines():
            print(line)
    return 1 if report.has_failures else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Migrate shared-store users into isolated tenant databases")
    parser.add_argument("--owner-id", type=int, action="append", dest="owner_ids", default=None)
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()
    configure_logging(get_settings().log_level)
    sys.exit(asyncio.run(_migrate(args.owner_ids, args.json)))


if __name__ == "__main__":
    main()
