"""Bounded linear retry for playbook runs.

No jitter, no circuit breaking: a fixed number of retries with a fixed
delay and an optional recovery plan run between attempts.
"""
import functools
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Type

from mxdeploy.core.config import get_config
from mxdeploy.core.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how long to wait before re-running a failed step.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        delay: Seconds to wait before each retry
        backoff: Multiplier applied to the delay after every retry (1.0 = linear)
    """

    max_retries: int = 2
    delay: float = 10.0
    backoff: float = 1.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        config = get_config()
        return cls(max_retries=config.max_retries, delay=config.retry_delay)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


@dataclass
class RetryOutcome:
    success: bool
    attempts: int
    recoveries: List = field(default_factory=list)


def run_with_retries(
    func: Callable[[], bool],
    policy: Optional[RetryPolicy] = None,
    recovery=None,
    sleep: Callable[[float], None] = time.sleep,
    retry_on: Tuple[Type[Exception], ...] = (),
) -> RetryOutcome:
    """Call ``func`` until it returns truthy or the policy is exhausted.

    Args:
        func: Zero-argument callable, truthy on success
        policy: Retry policy (defaults to the configured one)
        recovery: Optional object with ``run()`` executed before each retry
        sleep: Sleep function, replaced in tests
        retry_on: Exceptions that count as a failed attempt instead of propagating

    Returns:
        RetryOutcome with the attempt count and the results of every recovery run
    """
    policy = policy or RetryPolicy.from_config()
    outcome = RetryOutcome(success=False, attempts=0)
    current_delay = policy.delay

    for attempt in range(1, policy.max_attempts + 1):
        outcome.attempts = attempt
        if attempt > 1:
            logger.info(f"Retry attempt {attempt - 1} of {policy.max_retries}")

        try:
            succeeded = bool(func())
        except retry_on as e:
            logger.warning(f"Attempt {attempt} raised: {e}")
            succeeded = False

        if succeeded:
            outcome.success = True
            return outcome

        if attempt == policy.max_attempts:
            break

        logger.warning(f"Attempt {attempt} failed")
        if recovery is not None:
            logger.info("Attempting automatic recovery...")
            outcome.recoveries.append(recovery.run())

        if current_delay > 0:
            logger.info(f"Waiting {current_delay:.0f} seconds before retry...")
            sleep(current_delay)
        current_delay *= policy.backoff

    logger.error(f"Failed after {outcome.attempts} attempts")
    return outcome


def retry(
    max_attempts: int = 3,
    delay: float = 2.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
):
    """Retry decorator for callables that signal failure by raising.

    Example (the Matrix API probe in Deployer.verify_services):
        @retry(max_attempts=3, delay=5, exceptions=(requests.RequestException,))
        def fetch_versions():
            ...
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts: {e}"
                        )
                        raise

                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt}/{max_attempts}): {e}"
                    )
                    sleep(current_delay)
                    current_delay *= backoff

            return None

        return wrapper

    return decorator
