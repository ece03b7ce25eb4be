"""HTTP client for the MediGuard API, mirroring what the browser app sends."""

import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests

from .analysis import BillAnalysis
from .history import HistoryItem, map_row_to_history_item
from .retry import MAX_RETRIES, call_with_retry, should_retry

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
GENERIC_FAILURE = "Something went wrong analyzing the bill. Please try again."
INVALID_RESPONSE = "Invalid response from MediGuard AI. Please try again."
UNEXPECTED_RESPONSE = "Received an unexpected response from MediGuard AI."


class ApiError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class MediGuardClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        access_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 120.0,
        max_retries: int = MAX_RETRIES,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_retries = max_retries

    def _headers(self) -> Dict[str, str]:
        if self.access_token:
            return {"Authorization": f"Bearer {self.access_token}"}
        return {}

    def _policy(self, failure_count: int, status: Optional[int]) -> bool:
        return should_retry(failure_count, status, self.max_retries)

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.session.request(
                method, f"{self.base_url}{path}", headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise ApiError(GENERIC_FAILURE) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise ApiError(INVALID_RESPONSE, response.status_code) from e

        if not response.ok:
            message = payload.get("error") if isinstance(payload, dict) else None
            raise ApiError(message or GENERIC_FAILURE, response.status_code)
        return payload

    def _analyze(self, data: Dict[str, str], files: Optional[Dict[str, Any]] = None) -> BillAnalysis:
        def send() -> Dict[str, Any]:
            return self._request("POST", "/api/analyze-bill", data=data, files=files)

        payload = call_with_retry(send, policy=self._policy, retry_on=(ApiError,))
        if not isinstance(payload, dict) or not payload.get("analysis"):
            raise ApiError(UNEXPECTED_RESPONSE)
        return BillAnalysis.model_validate(payload["analysis"])

    @staticmethod
    def _form(insurance_provider: str, user_question: Optional[str]) -> Dict[str, str]:
        data = {"insuranceProvider": insurance_provider}
        if user_question and user_question.strip():
            data["userQuestion"] = user_question.strip()
        return data

    def analyze_text(
        self, bill_text: str, insurance_provider: str = "", user_question: Optional[str] = None
    ) -> BillAnalysis:
        if not bill_text.strip():
            raise ApiError("Please paste your bill text before analyzing.", 400)
        data = self._form(insurance_provider, user_question)
        data["billText"] = bill_text.strip()
        return self._analyze(data)

    def analyze_file(
        self,
        file: Union[str, Path, bytes],
        insurance_provider: str = "",
        user_question: Optional[str] = None,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> BillAnalysis:
        if isinstance(file, (str, Path)):
            path = Path(file)
            content = path.read_bytes()
            filename = filename or path.name
        else:
            content = file
        if not content:
            raise ApiError("Please upload your bill image before analyzing.", 400)
        filename = filename or "bill"
        content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        files = {"billImage": (filename, content, content_type)}
        return self._analyze(self._form(insurance_provider, user_question), files=files)

    def history(self) -> List[HistoryItem]:
        payload = self._request("GET", "/api/history")
        items = [map_row_to_history_item(_item_as_row(raw)) for raw in payload.get("history", [])]
        return [item for item in items if item is not None]

    def history_item(self, analysis_id: str) -> Optional[HistoryItem]:
        payload = self._request("GET", f"/api/history/{analysis_id}")
        return map_row_to_history_item(_item_as_row(payload.get("item") or {}))

    def guest_usage(self) -> Dict[str, Any]:
        return self._request("GET", "/api/guest-usage")


def _item_as_row(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": raw.get("id"),
        "bill_title": raw.get("title"),
        "created_at": raw.get("createdAt"),
        "ai_result": raw.get("analysis"),
    }
