from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .schemas import ItemCreate, ItemOut, ItemStatus
from .utils import is_temp_id, utcnow

__all__ = [
    "ArchiveOperation",
    "CreateOperation",
    "DeleteOperation",
    "Item",
    "ItemStatus",
    "QueuedOperation",
    "UpdateOperation",
    "parse_operation",
]


# PUBLIC_INTERFACE
class Item(ItemOut):
    """
    A captured note/link as held in the local durable store.

    Fields beyond the service representation:
    - synced: True only when id and fields are known to match the remote store.

    Every stored item is in exactly one of three states:
    unsynced-temp (temporary id, synced=False), unsynced-permanent
    (permanent id, synced=False, an update/delete is pending) or synced.
    """

    synced: bool = Field(default=False, description="Whether the record matches the remote store")

    @property
    def is_temporary(self) -> bool:
        return is_temp_id(self.id)

    # PUBLIC_INTERFACE
    @classmethod
    def from_remote(cls, remote: ItemOut) -> "Item":
        """Build a synced local record from a service response."""
        return cls(**remote.model_dump(), synced=True)


class _Operation(BaseModel):
    """Shared shape of queued operations. Instances are immutable."""

    model_config = ConfigDict(frozen=True)

    queue_id: Optional[int] = Field(default=None, description="Replay order, assigned by the store at enqueue")
    timestamp: datetime = Field(default_factory=utcnow, description="Creation time, informational only")


# PUBLIC_INTERFACE
class CreateOperation(_Operation):
    """Create the item known locally as `temp_id`; `data.week_of` is frozen."""

    type: Literal["create"] = "create"
    temp_id: str
    data: ItemCreate

    @property
    def target_id(self) -> str:
        return self.temp_id


# PUBLIC_INTERFACE
class UpdateOperation(_Operation):
    """Apply `changes` (only the fields the caller set) to `item_id`."""

    type: Literal["update"] = "update"
    item_id: str
    changes: Dict[str, Any]

    @property
    def target_id(self) -> str:
        return self.item_id


# PUBLIC_INTERFACE
class DeleteOperation(_Operation):
    """Soft-delete `item_id` remotely."""

    type: Literal["delete"] = "delete"
    item_id: str

    @property
    def target_id(self) -> str:
        return self.item_id


# PUBLIC_INTERFACE
class ArchiveOperation(_Operation):
    """Move the active items of `week_of` to archived. The week is captured at call time."""

    type: Literal["archive"] = "archive"
    week_of: str

    @property
    def target_id(self) -> Optional[str]:
        return None


QueuedOperation = Annotated[
    Union[CreateOperation, UpdateOperation, DeleteOperation, ArchiveOperation],
    Field(discriminator="type"),
]

_OPERATION_ADAPTER: TypeAdapter = TypeAdapter(QueuedOperation)


# PUBLIC_INTERFACE
def parse_operation(payload: Union[str, bytes, Dict[str, Any]]) -> QueuedOperation:
    """Parse a stored operation payload (JSON text or dict) into its variant."""
    if isinstance(payload, (str, bytes)):
        return _OPERATION_ADAPTER.validate_json(payload)
    return _OPERATION_ADAPTER.validate_python(payload)
