import logging
import time
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 2


def is_client_error(status: Optional[int]) -> bool:
    return status is not None and 400 <= status < 500


def should_retry(failure_count: int, status: Optional[int], max_retries: int = MAX_RETRIES) -> bool:
    """Decide whether to try again after a failure.

    ``failure_count`` is the number of failures before this one, so an
    operation runs at most ``max_retries + 1`` times. Client errors (4xx) are
    never retried; failures without a status (network errors) are.
    """
    if is_client_error(status):
        return False
    return failure_count < max_retries


def status_of(error: BaseException) -> Optional[int]:
    return getattr(error, "status", None)


def call_with_retry(
    operation: Callable[[], T],
    policy: Callable[[int, Optional[int]], bool] = should_retry,
    get_status: Callable[[BaseException], Optional[int]] = status_of,
    retry_on: tuple = (Exception,),
    delay: float = 0.0,
) -> T:
    failure_count = 0
    while True:
        try:
            return operation()
        except retry_on as e:
            status = get_status(e)
            if not policy(failure_count, status):
                raise
            failure_count += 1
            logger.info(f"Retrying after failure {failure_count} (status={status}): {e}")
            if delay:
                time.sleep(delay * failure_count)
