"""Retry policy for secret store calls.

Only connectivity failures are retried. A rejected write or a missing
secret is an answer from the store, and asking again would not change it.
"""

import logging
from dataclasses import dataclass
from typing import Tuple, Type

import tenacity
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from .exceptions import ConnectivityError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfiguration:
    """How often and how patiently a store call is repeated.

    Attributes:
        max_attempts: Attempts per call, the first one included
        base_delay: First backoff delay in seconds
        max_delay: Backoff cap in seconds
        exponential_base: Backoff growth factor
        jitter: Upper bound of random seconds added to each delay
        retry_on_exceptions: Errors worth another attempt
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: float = 0.1
    retry_on_exceptions: Tuple[Type[Exception], ...] = (ConnectivityError,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay <= 0 or self.max_delay <= 0:
            raise ValueError(
                f"delays must be > 0, got base_delay={self.base_delay}, max_delay={self.max_delay}"
            )
        if self.exponential_base < 1:
            raise ValueError(f"exponential_base must be >= 1, got {self.exponential_base}")
        if self.jitter < 0:
            raise ValueError(f"jitter must be >= 0, got {self.jitter}")
        if not self.retry_on_exceptions:
            raise ValueError("retry_on_exceptions cannot be empty")


def _log_retry(retry_state: tenacity.RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    if exception is not None:
        logger.warning(
            f"Vault call failed (attempt {retry_state.attempt_number}), retrying: "
            f"{type(exception).__name__}: {exception}"
        )


def build_retrying(config: RetryConfiguration) -> Retrying:
    """Tenacity controller for one store client.

    The last store error is re-raised once attempts run out, so callers see
    the StoreError itself rather than a tenacity.RetryError.
    """
    return Retrying(
        wait=wait_exponential_jitter(
            initial=config.base_delay,
            max=config.max_delay,
            exp_base=config.exponential_base,
            jitter=config.jitter,
        ),
        stop=stop_after_attempt(config.max_attempts),
        retry=retry_if_exception_type(config.retry_on_exceptions),
        before_sleep=_log_retry,
        reraise=True,
    )
