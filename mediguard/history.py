"""Saved analyses and user profiles, stored in Supabase."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from postgrest import APIError
from pydantic import ValidationError
from supabase import Client

from .analysis import BillAnalysis
from .errors import StorageError
from .session import AuthUser

logger = logging.getLogger(__name__)

ANALYSES_TABLE = "analyses"
PROFILES_TABLE = "profiles"
HISTORY_COLUMNS = "id, created_at, bill_title, insurance_provider, ai_result"


def parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        # Postgres may return a trailing Z
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(timezone.utc)


def format_bill_date(moment: datetime) -> str:
    return f"{moment.strftime('%b')} {moment.day}, {moment.year}"


def build_history_title(provider: Optional[str], created_at: Optional[str] = None) -> str:
    formatted = format_bill_date(parse_timestamp(created_at))
    if provider:
        return f"{provider} bill – {formatted}"
    return f"Saved analysis – {formatted}"


def build_history_summary(analysis: BillAnalysis, provider: Optional[str] = None) -> str:
    if analysis.summary:
        return analysis.summary
    if analysis.issues_found > 0:
        plural = "" if analysis.issues_found == 1 else "s"
        return f"MediGuard flagged {analysis.issues_found} potential issue{plural}."
    if provider:
        return f"Insurance: {provider}"
    return "Saved MediGuard analysis."


@dataclass
class HistoryItem:
    id: str
    title: str
    summary: str
    created_at: str
    analysis: BillAnalysis

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "summary": self.summary,
            "createdAt": self.created_at,
            "analysis": self.analysis.to_dict(),
        }


@dataclass
class Profile:
    id: str
    full_name: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Profile":
        return cls(
            id=str(row["id"]),
            full_name=row.get("full_name"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "fullName": self.full_name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


def map_row_to_history_item(row: Dict[str, Any]) -> Optional[HistoryItem]:
    """Rows without a readable stored analysis are skipped."""
    raw = row.get("ai_result")
    if not raw:
        return None
    try:
        analysis = BillAnalysis.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Skipping analysis {row.get('id')} with unreadable ai_result: {e.error_count()} error(s)")
        return None

    provider = row.get("insurance_provider")
    created_at = row.get("created_at") or datetime.now(timezone.utc).isoformat()
    return HistoryItem(
        id=str(row.get("id")),
        title=row.get("bill_title") or build_history_title(provider, created_at),
        summary=build_history_summary(analysis, provider),
        created_at=created_at,
        analysis=analysis,
    )


class HistoryStore:
    """Point reads and writes against the Supabase tables. No transactions."""

    def __init__(self, client: Client):
        self._client = client

    def save_analysis(
        self, user_id: str, analysis: BillAnalysis, insurance_provider: Optional[str] = None
    ) -> Optional[HistoryItem]:
        timestamp = datetime.now(timezone.utc).isoformat()
        row = {
            "user_id": user_id,
            "bill_title": build_history_title(insurance_provider, timestamp),
            "insurance_provider": insurance_provider or None,
            "total_billed": analysis.total_billed,
            "potential_savings": analysis.potential_savings,
            "issues_found": analysis.issues_found,
            "ai_result": analysis.to_dict(),
        }
        try:
            response = self._client.table(ANALYSES_TABLE).insert(row).execute()
        except APIError as e:
            raise StorageError(detail=f"Failed to save analysis: {e.message}") from e
        logger.info(f"Saved analysis for user {user_id}")
        return map_row_to_history_item(response.data[0]) if response.data else None

    def list_analyses(self, user_id: str) -> List[HistoryItem]:
        try:
            response = (
                self._client.table(ANALYSES_TABLE)
                .select(HISTORY_COLUMNS)
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .execute()
            )
        except APIError as e:
            raise StorageError(detail=f"Failed to load saved analyses: {e.message}") from e
        items = [map_row_to_history_item(row) for row in response.data or []]
        return [item for item in items if item is not None]

    def get_analysis(self, user_id: str, analysis_id: str) -> Optional[HistoryItem]:
        try:
            response = (
                self._client.table(ANALYSES_TABLE)
                .select(HISTORY_COLUMNS)
                .eq("user_id", user_id)
                .eq("id", analysis_id)
                .limit(1)
                .execute()
            )
        except APIError as e:
            raise StorageError(detail=f"Failed to load analysis {analysis_id}: {e.message}") from e
        if not response.data:
            return None
        return map_row_to_history_item(response.data[0])

    def get_profile(self, user_id: str) -> Optional[Profile]:
        try:
            response = self._client.table(PROFILES_TABLE).select("*").eq("id", user_id).limit(1).execute()
        except APIError as e:
            raise StorageError(detail=f"Failed to load profile: {e.message}") from e
        return Profile.from_row(response.data[0]) if response.data else None

    def upsert_profile(self, user_id: str, full_name: str) -> Profile:
        try:
            response = (
                self._client.table(PROFILES_TABLE)
                .upsert({"id": user_id, "full_name": full_name}, on_conflict="id")
                .execute()
            )
        except APIError as e:
            raise StorageError(detail=f"Failed to upsert profile: {e.message}") from e
        if response.data:
            return Profile.from_row(response.data[0])
        return Profile(id=user_id, full_name=full_name)

    def ensure_profile(self, user: AuthUser) -> Profile:
        """Stored profile, or a new one seeded from the auth metadata."""
        profile = self.get_profile(user.id)
        if profile is not None:
            return profile
        return self.upsert_profile(user.id, user.derive_name())
