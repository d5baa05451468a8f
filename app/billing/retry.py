import logging

from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.billing.exceptions import ConcurrencyError
from app.config import TX_RETRY_ATTEMPTS

logger = logging.getLogger(__name__)

# Only transaction conflicts are retried; every other BillingError is final.
retry_on_conflict = retry(
    retry=retry_if_exception_type(ConcurrencyError),
    stop=stop_after_attempt(TX_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
