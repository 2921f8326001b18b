from __future__ import annotations

import random
import time
from typing import Callable, Optional

from . import config
from .events import Broadcast
from .logging_utils import _extractor_event
from .models import Account, PacingState


def compute_delay_ms(
    account: Account,
    quota_waiting: bool,
    rng: Optional[random.Random] = None,
) -> int:
    """Return the wait before the next job request, in milliseconds.

    Quota-waiting uses a fixed slow poll; otherwise the delay is drawn
    uniformly from the account's ``[min, max]`` request interval.
    """

    if quota_waiting:
        return config.QUOTA_WAIT_MS

    low = account.min_request_interval
    high = account.max_request_interval
    if low is None or high is None:
        low, high = config.DEFAULT_MIN_REQUEST_INTERVAL_MS, config.DEFAULT_MAX_REQUEST_INTERVAL_MS
    low, high = int(low), int(high)
    if high < low:
        low, high = high, low
    return (rng or random).randint(low, high)


def whole_seconds(delay_seconds: float) -> int:
    """Round a delay to whole seconds, halves rounding up."""

    return int(delay_seconds + 0.5)


class PacingController:
    """Tracks the earliest moment the next job request is allowed."""

    def __init__(
        self,
        state: PacingState,
        *,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.state = state
        self.clock = clock
        self.rng = rng
        self.countdown: Broadcast[int] = Broadcast("countdown")

    def schedule_next(self, account: Account, quota_waiting: bool) -> float:
        """Record the next allowed time and return the delay in seconds."""

        delay_ms = compute_delay_ms(account, quota_waiting, self.rng)
        delay = delay_ms / 1000.0
        self.state.next_allowed_at = self.clock() + delay
        self.countdown.publish(whole_seconds(delay))
        _extractor_event(
            "state",
            phase="pacing",
            kind="quota_wait" if quota_waiting else "interval",
            delay_ms=delay_ms,
            min_ms=account.min_request_interval,
            max_ms=account.max_request_interval,
        )
        return delay

    def remaining(self) -> float:
        """Seconds until the next request is allowed; zero when already allowed."""

        return max(0.0, self.state.next_allowed_at - self.clock())

    def republish(self) -> float:
        remaining = self.remaining()
        if remaining > 0:
            self.countdown.publish(whole_seconds(remaining))
        return remaining


__all__ = ["compute_delay_ms", "whole_seconds", "PacingController"]
