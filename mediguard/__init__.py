from .analysis import BillAnalysis, LineItem, parse_analysis
from .client import ApiError, MediGuardClient
from .retry import call_with_retry, should_retry

__all__ = [
    "BillAnalysis",
    "LineItem",
    "parse_analysis",
    "ApiError",
    "MediGuardClient",
    "call_with_retry",
    "should_retry",
]
