"""Per-request session state: who is asking, and how much a guest has used."""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

GUEST_WINDOW = timedelta(hours=24)
GUEST_USAGE_KEY = "guest_usage"
DEFAULT_DISPLAY_NAME = "MediGuard user"
GUEST_DISPLAY_NAME = "Guest"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GuestUsage:
    """Guest analysis counter that expires 24 hours after its window opened."""

    count: int = 0
    window_started_at: Optional[datetime] = None

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.window_started_at is None:
            return None
        return self.window_started_at + GUEST_WINDOW

    def current(self, now: datetime) -> "GuestUsage":
        """The usage still in effect at ``now``; an expired window resets to zero."""
        if self.window_started_at is None or now >= self.expires_at:
            return GuestUsage()
        return self

    def used(self, now: datetime) -> int:
        return self.current(now).count

    def remaining(self, limit: int, now: datetime) -> int:
        return max(0, limit - self.used(now))

    def is_exhausted(self, limit: int, now: datetime) -> bool:
        return self.used(now) >= limit

    def record(self, now: datetime) -> "GuestUsage":
        active = self.current(now)
        if active.window_started_at is None:
            return GuestUsage(count=1, window_started_at=now)
        return replace(active, count=active.count + 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "window_started_at": self.window_started_at.isoformat() if self.window_started_at else None,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "GuestUsage":
        """Read the stored form back. Anything unreadable counts as a fresh window."""
        if not isinstance(raw, dict):
            return cls()
        try:
            count = int(raw.get("count") or 0)
            started = raw.get("window_started_at")
            window_started_at = datetime.fromisoformat(started) if started else None
        except (TypeError, ValueError):
            logger.warning(f"Discarding unreadable guest usage: {raw!r}")
            return cls()
        if window_started_at is not None and window_started_at.tzinfo is None:
            window_started_at = window_started_at.replace(tzinfo=timezone.utc)
        return cls(count=max(0, count), window_started_at=window_started_at)


@dataclass
class AuthUser:
    id: str
    email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def metadata_name(self) -> str:
        first = str(self.metadata.get("first_name") or "").strip()
        last = str(self.metadata.get("last_name") or "").strip()
        return f"{first} {last}".strip()

    def derive_name(self) -> str:
        """Name to seed a profile with when none is stored yet."""
        if self.metadata_name:
            return self.metadata_name
        if self.email:
            return self.email.split("@")[0] or DEFAULT_DISPLAY_NAME
        return DEFAULT_DISPLAY_NAME

    @classmethod
    def from_supabase(cls, user: Any) -> "AuthUser":
        return cls(
            id=str(user.id),
            email=getattr(user, "email", None),
            metadata=dict(getattr(user, "user_metadata", None) or {}),
        )


@dataclass
class SessionContext:
    user: Optional[AuthUser]
    guest_usage: GuestUsage = field(default_factory=GuestUsage)
    guest_limit: int = 3

    @property
    def is_guest(self) -> bool:
        return self.user is None

    def guest_limit_reached(self, now: Optional[datetime] = None) -> bool:
        return self.is_guest and self.guest_usage.is_exhausted(self.guest_limit, now or utcnow())

    def record_guest_analysis(self, store: Dict[str, Any], now: Optional[datetime] = None) -> None:
        """Count one successful guest analysis and write it back to the session store."""
        if not self.is_guest:
            return
        self.guest_usage = self.guest_usage.record(now or utcnow())
        store[GUEST_USAGE_KEY] = self.guest_usage.to_dict()

    def guest_summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        active = self.guest_usage.current(now)
        return {
            "limit": self.guest_limit,
            "used": active.count,
            "remaining": active.remaining(self.guest_limit, now),
            "resetsAt": active.expires_at.isoformat() if active.expires_at else None,
        }


def display_name(user: Optional[AuthUser], profile_name: Optional[str] = None) -> str:
    if user is None:
        return GUEST_DISPLAY_NAME
    if profile_name and profile_name.strip():
        return profile_name.strip()
    return user.derive_name()
