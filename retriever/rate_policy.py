"""Account-wide retrieval rate policy.

Retrieval is billed at the month's peak hourly rate, so once a rate has been
raised in a month there is nothing to gain by lowering it again before the
month ends. The controller therefore only ever raises the policy within a
month, and waits for a change to propagate before transfers start.
"""

import math
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Tuple

from common.constants import (
    GIB,
    MAX_RETRIEVAL_RATE_GIB,
    MIN_RETRIEVAL_RATE_GIB,
    POLICY_PROPAGATION_SECONDS,
    POLICY_RETRY_DELAY_SECONDS,
    POLICY_WARN_ITERATIONS,
    RETRIEVAL_OVERHEAD_HOURS,
)
from common.exceptions import TransientRemoteError
from common.logging_config import get_logger
from vault.service import StorageService

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateState:
    """
    What the controller has established so far.

    month: (year, month) the applied rate belongs to, None before the first call
    applied_bytes_per_hour: highest rate ensured in that month
    propagation_pending: a policy change was issued and not yet waited out
    """
    month: Optional[Tuple[int, int]] = None
    applied_bytes_per_hour: int = 0
    propagation_pending: bool = False


def billing_month(epoch: float) -> Tuple[int, int]:
    local = time.localtime(epoch)
    return local.tm_year, local.tm_mon


def rate_for_deadline(
    size_bytes: int,
    deadline: float,
    now: float,
    min_rate_gib: int = MIN_RETRIEVAL_RATE_GIB,
    max_rate_gib: int = MAX_RETRIEVAL_RATE_GIB,
    overhead_hours: float = RETRIEVAL_OVERHEAD_HOURS,
) -> int:
    """
    Convert a completion deadline into a retrieval rate.

    A deadline that falls inside the fixed overhead window cannot be met; it
    is treated as one usable hour past the overhead instead of failing.

    Args:
        size_bytes: Archive size
        deadline: Epoch time the retrieval should be done by
        now: Current epoch time
        min_rate_gib: Lower bound of the result
        max_rate_gib: Upper bound of the result
        overhead_hours: Hours lost to job staging before data flows

    Returns:
        Rate in GiB/hour, clamped to [min_rate_gib, max_rate_gib]
    """
    hours_remaining = (deadline - now) / 3600
    usable_hours = max(hours_remaining - overhead_hours, 1)
    rate = math.ceil((size_bytes / GIB) / usable_hours)
    return max(min_rate_gib, min(max_rate_gib, rate))


class RatePolicyController:
    """Keeps the account's retrieval policy at or above the rate transfers need."""

    def __init__(
        self,
        service: StorageService,
        min_rate_gib: int = MIN_RETRIEVAL_RATE_GIB,
        max_rate_gib: int = MAX_RETRIEVAL_RATE_GIB,
        overhead_hours: float = RETRIEVAL_OVERHEAD_HOURS,
        propagation_delay: float = POLICY_PROPAGATION_SECONDS,
        retry_delay: float = POLICY_RETRY_DELAY_SECONDS,
        warn_iterations: int = POLICY_WARN_ITERATIONS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.service = service
        self.min_rate_gib = min_rate_gib
        self.max_rate_gib = max_rate_gib
        self.overhead_hours = overhead_hours
        self.propagation_delay = propagation_delay
        self.retry_delay = retry_delay
        self.warn_iterations = warn_iterations
        self.clock = clock
        self.sleep = sleep

    def clamp(self, rate_gib: int) -> int:
        return max(self.min_rate_gib, min(self.max_rate_gib, rate_gib))

    def target_rate(
        self,
        size_bytes: int,
        rate_gib: Optional[int] = None,
        deadline: Optional[int] = None,
        now: Optional[float] = None
    ) -> int:
        """
        Rate a retrieval asks for, in GiB/hour.

        An explicit rate takes precedence over a deadline; with neither, the
        minimum rate is used.
        """
        if rate_gib is not None:
            return self.clamp(rate_gib)
        if deadline is not None:
            return rate_for_deadline(
                size_bytes,
                deadline,
                self.clock() if now is None else now,
                self.min_rate_gib,
                self.max_rate_gib,
                self.overhead_hours,
            )
        return self.min_rate_gib

    def ensure_rate(self, state: RateState, min_bytes_per_hour: int) -> RateState:
        """
        Make sure the active policy is a byte rate of at least the requested one.

        Within one month the target never drops below what was already
        applied. The first call in a new month starts the month over and sets
        the policy to the requested rate. Retries until the service confirms
        the policy; there is no failure exit.

        Args:
            state: State returned by the previous call (RateState() at startup)
            min_bytes_per_hour: Rate the next transfer needs

        Returns:
            New RateState, with any propagation delay already waited out
        """
        month = billing_month(self.clock())
        force_set = state.month is not None and state.month != month

        if state.month == month:
            target = max(min_bytes_per_hour, state.applied_bytes_per_hour)
        else:
            target = min_bytes_per_hour
            if force_set:
                logger.info(f"New billing month {month[0]}-{month[1]:02d}; starting at {target} bytes/hour")
        state = replace(state, month=month, applied_bytes_per_hour=target)

        iterations = 0
        while True:
            if state.propagation_pending:
                logger.info(f"Retrieval policy changed; waiting {self.propagation_delay}s for it to apply")
                self.sleep(self.propagation_delay)
                state = replace(state, propagation_pending=False)

            if not force_set:
                try:
                    policy = self.service.get_retrieval_policy()
                except TransientRemoteError as e:
                    logger.warning(f"Could not read retrieval policy: {e}")
                    self.sleep(self.retry_delay)
                    continue

                if policy.is_byte_rate() and policy.bytes_per_hour >= target:
                    logger.info(f"Retrieval rate set to: {policy.bytes_per_hour} bytes/hour")
                    return state

                logger.info(
                    f"Resetting retrieval rate from {policy.strategy}: {policy.bytes_per_hour} "
                    f"to {target} bytes/hour"
                )

            iterations += 1
            if iterations > self.warn_iterations and iterations % self.warn_iterations:
                logger.warning(f"Looped {iterations} times trying to set retrieval rate")

            try:
                self.service.set_retrieval_policy(target)
            except TransientRemoteError as e:
                logger.warning(f"Could not set retrieval policy: {e}")
                self.sleep(self.retry_delay)
                continue

            force_set = False
            state = replace(state, propagation_pending=True)
