from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal


CollectionKind = Literal[
    "master_configs",
    "contacts",
    "messages",
    "auto_replies",
    "quick_replies",
    "chat_labels",
    "documents",
]


class OwnerStage(str, Enum):
    PENDING = "pending"
    PROVISIONED = "provisioned"
    REGISTERED = "registered"
    DATA_COPIED = "data_copied"
    DONE = "done"
    FAILED = "failed"
    # Already registered before this run; nothing was touched.
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StorageCoordinates:
    # Everything a later reader needs to reach an isolated tenant store.
    database_name: str
    host: str
    port: int
    principal_name: str
    principal_secret: str
