"""Shared data models for the Tesla Notes application."""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

CATEGORIES = ("work", "study", "project", "fitness", "media", "daily", "idea", "planning")
DEFAULT_CATEGORY = "daily"

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_INCOMPLETE = "incomplete"
COMPLETION_STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_INCOMPLETE)

_NEXT_STATUS = {
    STATUS_PENDING: STATUS_COMPLETED,
    STATUS_COMPLETED: STATUS_INCOMPLETE,
    STATUS_INCOMPLETE: STATUS_PENDING,
}


def next_completion_status(current: str) -> str:
    """Return the status following ``current`` in the pending/completed/incomplete cycle."""
    return _NEXT_STATUS.get(current, STATUS_PENDING)


def _as_bool(value: Any) -> bool:
    # sqlite and legacy JSON dumps store flags as 0/1
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "t", "yes")
    return bool(value)


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


@dataclass
class Memo:
    """A timestamped note."""
    id: int
    uid: str
    created_ts: int
    updated_ts: int
    category: str = DEFAULT_CATEGORY
    target_date: Optional[str] = None
    completion_status: str = STATUS_PENDING
    content: str = ""
    pinned: bool = False
    archived: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Memo":
        return cls(
            id=int(data["id"]),
            uid=data.get("uid") or "",
            created_ts=int(data["created_ts"]),
            updated_ts=int(data.get("updated_ts") or data["created_ts"]),
            category=data.get("category") or DEFAULT_CATEGORY,
            target_date=data.get("target_date") or None,
            completion_status=data.get("completion_status") or STATUS_PENDING,
            content=data.get("content") or "",
            pinned=_as_bool(data.get("pinned", False)),
            archived=_as_bool(data.get("archived", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def is_placeholder(self) -> bool:
        """True while the memo only exists client-side."""
        return self.id < 0


@dataclass
class DailyPlan:
    """A scheduled task tied to a calendar date."""
    id: int
    plan_date: str
    title: str
    created_ts: int
    updated_ts: int
    description: Optional[str] = None
    category: str = DEFAULT_CATEGORY
    completed: bool = False
    priority: int = 0
    completed_ts: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DailyPlan":
        return cls(
            id=int(data["id"]),
            plan_date=data["plan_date"],
            title=data["title"],
            created_ts=int(data["created_ts"]),
            updated_ts=int(data.get("updated_ts") or data["created_ts"]),
            description=data.get("description"),
            category=data.get("category") or DEFAULT_CATEGORY,
            completed=_as_bool(data.get("completed", False)),
            priority=int(data.get("priority") or 0),
            completed_ts=_optional_int(data.get("completed_ts")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CreateMemoInput:
    """Fields accepted when creating a memo."""
    content: str
    category: Optional[str] = None
    target_date: Optional[str] = None


@dataclass
class UpdateMemoInput:
    """Partial memo update; ``None`` means the field is left untouched."""
    id: int
    content: Optional[str] = None
    category: Optional[str] = None
    target_date: Optional[str] = None
    completion_status: Optional[str] = None
    pinned: Optional[bool] = None
    archived: Optional[bool] = None

    def changes(self) -> Dict[str, Any]:
        """Return only the fields that were provided."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "id" and getattr(self, f.name) is not None
        }


@dataclass
class SyncStatus:
    """Sync indicator state shown by the UI badge."""
    pending_operations: int = 0
    last_error: Optional[str] = None
    last_success_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Notice:
    """A user-visible message (toast or alert)."""
    level: str  # info, success, error, alert
    message: str
    created_at: float
    action: Optional[Dict[str, Any]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
