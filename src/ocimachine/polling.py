"""
Convergence polling and retry helpers.

OCI lifecycle operations are asynchronous: the API accepts a launch or a
power action and the instance walks through intermediate states on its
own. ``wait_until`` re-reads a resource until a predicate says it has
converged, bounded by a PollPolicy and interruptible by a cancel event.

``retry_call`` is the per-request retry used for idempotent list calls:
a fixed number of attempts with a constant pause between them.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from .errors import (
    ConvergenceCancelledError,
    ConvergenceTimeoutError,
    ProviderReadError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_POLL_TIMEOUT = 900.0


@dataclass(frozen=True)
class PollPolicy:
    """Bounds for one convergence wait.

    Args:
        interval: Seconds to wait between reads.
        max_attempts: Maximum number of reads, or None for no read cap.
        timeout: Maximum seconds since the first read, or None for no
            time cap. With both caps None the wait is unbounded.
    """

    interval: float = DEFAULT_POLL_INTERVAL
    max_attempts: Optional[int] = None
    timeout: Optional[float] = DEFAULT_POLL_TIMEOUT

    @classmethod
    def from_timeout(cls, interval: float, timeout: float) -> "PollPolicy":
        """Build a policy whose read cap matches a time budget."""
        attempts = max(1, int(timeout // interval) + 1) if interval > 0 else None
        return cls(interval=interval, max_attempts=attempts, timeout=timeout)


def wait_until(
    read: Callable[[], T],
    still_pending: Callable[[T], bool],
    policy: PollPolicy = PollPolicy(),
    cancel: Optional[threading.Event] = None,
    resource_id: Optional[str] = None,
    target_state: Optional[str] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Read a resource until it converges.

    The first read happens immediately. A failed read is never retried:
    the wait stops and the failure is reported as ProviderReadError.

    Args:
        read: Fetches the current resource snapshot.
        still_pending: Returns True while the snapshot has not converged.
        policy: Attempt and time bounds.
        cancel: Optional event; once set, the wait stops before the next read.
        resource_id: OCID reported on failure.
        target_state: Target state reported on failure.
        clock: Monotonic time source.
        sleep: Pause used when no cancel event is given.

    Returns:
        The first snapshot for which ``still_pending`` is False.

    Raises:
        ProviderReadError: A read raised.
        ConvergenceTimeoutError: The policy's bounds were exhausted.
        ConvergenceCancelledError: ``cancel`` was set.
    """
    started = clock()
    attempt = 0
    while True:
        if cancel is not None and cancel.is_set():
            raise ConvergenceCancelledError(
                f"wait for {resource_id} to reach {target_state} was cancelled",
                resource_id=resource_id,
                target_state=target_state,
            )

        attempt += 1
        try:
            snapshot = read()
        except Exception as exc:
            raise ProviderReadError(
                f"reading {resource_id} failed on attempt {attempt}: {exc}",
                resource_id=resource_id,
                target_state=target_state,
            ) from exc

        if not still_pending(snapshot):
            logger.debug(
                "%s reached %s after %d read(s)", resource_id, target_state, attempt,
            )
            return snapshot

        if policy.max_attempts is not None and attempt >= policy.max_attempts:
            raise ConvergenceTimeoutError(
                f"{resource_id} did not reach {target_state} "
                f"after {attempt} read(s)",
                resource_id=resource_id,
                target_state=target_state,
            )
        if policy.timeout is not None and clock() - started + policy.interval > policy.timeout:
            raise ConvergenceTimeoutError(
                f"{resource_id} did not reach {target_state} "
                f"within {policy.timeout:g}s",
                resource_id=resource_id,
                target_state=target_state,
            )

        logger.debug(
            "%s not yet %s (read %d), waiting %.1fs",
            resource_id, target_state, attempt, policy.interval,
        )
        if cancel is not None:
            cancel.wait(policy.interval)
        else:
            sleep(policy.interval)


def retry_call(
    call: Callable[[], T],
    attempts: int,
    interval: float,
    retry_on: Tuple[Type[BaseException], ...],
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Invoke ``call`` up to ``attempts`` times with a constant pause.

    Only exceptions listed in ``retry_on`` are retried; anything else,
    and the last retryable failure, propagates unchanged.
    """
    for attempt in range(1, attempts + 1):
        try:
            return call()
        except retry_on as exc:
            if attempt >= attempts:
                raise
            logger.debug(
                "Attempt %d/%d failed (%s), retrying in %.1fs",
                attempt, attempts, exc, interval,
            )
            sleep(interval)
    raise ValueError("attempts must be at least 1")
