"""BillAnalysis model and the validate-and-repair step for model answers.

The model is asked for strict JSON, but its output is only trusted for the
three fields an analysis cannot exist without (summary, totalBilled, items).
Line items are repaired field by field with explicit defaults, and the two
derived totals are always recomputed here.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import MalformedAnalysisError

logger = logging.getLogger(__name__)

UNKNOWN_CPT_CODE = "UNKNOWN"
STATUS_CORRECT = "correct"
STATUS_INCORRECT = "incorrect"
VALID_STATUSES = (STATUS_CORRECT, STATUS_INCORRECT)

LineItemStatus = Literal["correct", "incorrect"]

CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```$", re.IGNORECASE)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class LineItem(CamelModel):
    cpt_code: str = UNKNOWN_CPT_CODE
    description: str = ""
    amount: float = 0.0
    status: LineItemStatus = STATUS_CORRECT
    why: str = ""
    estimated_reasonable_amount: Optional[float] = None

    @property
    def is_issue(self) -> bool:
        return self.status == STATUS_INCORRECT

    @property
    def savings(self) -> float:
        """Amount above the reasonable estimate, for flagged items only."""
        if not self.is_issue or self.estimated_reasonable_amount is None:
            return 0.0
        return max(0.0, self.amount - self.estimated_reasonable_amount)


class BillAnalysis(CamelModel):
    summary: str
    insurance_plan: Optional[str] = None
    total_billed: float
    potential_savings: float = 0.0
    issues_found: int = 0
    items: List[LineItem] = Field(default_factory=list)
    dispute_letter: str = ""
    question_answer: Optional[str] = None


def is_number(value: Any) -> bool:
    """True for finite ints and floats. JSON booleans are not amounts."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints too large for a float
        return False


def coerce_cpt_code(value: Any) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if is_number(value):
        return str(int(value)) if float(value).is_integer() else str(value)
    return UNKNOWN_CPT_CODE


def coerce_text(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def coerce_optional_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def coerce_amount(value: Any) -> float:
    return float(value) if is_number(value) else 0.0


def coerce_status(value: Any) -> str:
    return value if value in VALID_STATUSES else STATUS_CORRECT


def coerce_estimate(value: Any) -> Optional[float]:
    return float(value) if is_number(value) else None


def normalize_line_item(raw: Any) -> LineItem:
    """Repair a single item in place of rejecting it. Non-objects become all defaults."""
    if not isinstance(raw, dict):
        raw = {}
    return LineItem(
        cpt_code=coerce_cpt_code(raw.get("cptCode")),
        description=coerce_text(raw.get("description")),
        amount=coerce_amount(raw.get("amount")),
        status=coerce_status(raw.get("status")),
        why=coerce_text(raw.get("why")),
        estimated_reasonable_amount=coerce_estimate(raw.get("estimatedReasonableAmount")),
    )


def count_issues(items: List[LineItem]) -> int:
    return sum(1 for item in items if item.is_issue)


def compute_potential_savings(items: List[LineItem]) -> float:
    return sum((item.savings for item in items), 0.0)


def load_answer_json(answer: str) -> Any:
    """Decode the model answer. A markdown code fence around the JSON is stripped first."""
    text = (answer or "").strip()
    fence_match = CODE_FENCE_RE.match(text)
    if fence_match:
        text = fence_match.group(1)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedAnalysisError("Model answer is not valid JSON", answer=answer) from e


def normalize_analysis(parsed: Any, answer: Optional[str] = None) -> BillAnalysis:
    if not isinstance(parsed, dict):
        raise MalformedAnalysisError("Model answer is not a JSON object", answer=answer)
    if not isinstance(parsed.get("summary"), str):
        raise MalformedAnalysisError("summary is missing or not a string", answer=answer)
    if not is_number(parsed.get("totalBilled")):
        raise MalformedAnalysisError("totalBilled is missing or not a number", answer=answer)
    if not isinstance(parsed.get("items"), list):
        raise MalformedAnalysisError("items is missing or not a list", answer=answer)

    items = [normalize_line_item(raw) for raw in parsed["items"]]

    return BillAnalysis(
        summary=parsed["summary"],
        insurance_plan=coerce_optional_text(parsed.get("insurancePlan")),
        total_billed=float(parsed["totalBilled"]),
        potential_savings=compute_potential_savings(items),
        issues_found=count_issues(items),
        items=items,
        dispute_letter=coerce_text(parsed.get("disputeLetter")),
        question_answer=coerce_optional_text(parsed.get("questionAnswer")),
    )


def parse_analysis(answer: str) -> BillAnalysis:
    try:
        return normalize_analysis(load_answer_json(answer), answer=answer)
    except MalformedAnalysisError as e:
        logger.error(f"Failed to parse analysis JSON ({e.detail}): {(answer or '')[:500]}")
        raise
