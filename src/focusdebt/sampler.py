"""Periodic sampling of the focused window."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timedelta
from typing import Callable, Optional

from .models import Sample
from .normalization import build_sample
from .probe import PlatformProbe, ProbeError, ProbeTimeout

logger = logging.getLogger(__name__)

_WARN_EVERY = 50


class ActivitySampler:
    """Runs the probe once per tick and pushes the result downstream.

    A successful probe becomes a :class:`Sample` passed to ``on_sample``; a
    failed or timed-out probe is reported to ``on_gap`` with the tick's
    timestamp.
    """

    def __init__(
        self,
        probe: PlatformProbe,
        *,
        interval: timedelta,
        probe_timeout: timedelta,
        on_sample: Callable[[Sample], None],
        on_gap: Callable[[datetime, ProbeError], None],
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.probe = probe
        self.interval = interval
        self.probe_timeout = probe_timeout
        self._on_sample = on_sample
        self._on_gap = on_gap
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="focusdebt-probe")
        self._inflight: Optional[Future] = None
        self.consecutive_failures = 0

    def tick(self) -> Optional[Sample]:
        timestamp = self._clock()
        try:
            raw = self._query_probe()
        except ProbeError as exc:
            self.consecutive_failures += 1
            if self.consecutive_failures == 1 or self.consecutive_failures % _WARN_EVERY == 0:
                logger.warning(
                    "Could not get active window (consecutive failures: %d): %s",
                    self.consecutive_failures,
                    exc,
                )
            else:
                logger.debug("Probe failed: %s", exc)
            self._on_gap(timestamp, exc)
            return None

        self.consecutive_failures = 0
        sample = build_sample(raw, timestamp)
        logger.debug(
            "Sample: app=%s domain=%s title=%s",
            sample.app_name,
            sample.domain,
            sample.window_title,
        )
        self._on_sample(sample)
        return sample

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        """Tick on a fixed cadence until ``stop_event`` is set."""
        interval = self.interval.total_seconds()
        next_tick = time.monotonic()
        try:
            while not stop_event.is_set():
                try:
                    self.tick()
                except Exception:
                    logger.exception("Sampling tick failed")
                next_tick += interval
                delay = next_tick - time.monotonic()
                if delay < 0:
                    # Fell behind; skip the missed ticks rather than bursting.
                    next_tick = time.monotonic()
                    delay = 0
                stop_event.wait(delay)
        finally:
            self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _query_probe(self):
        if self._inflight is not None and not self._inflight.done():
            raise ProbeTimeout("previous probe is still running")
        future = self._executor.submit(self.probe.sample)
        self._inflight = future
        try:
            return future.result(timeout=self.probe_timeout.total_seconds())
        except FutureTimeout as exc:
            raise ProbeTimeout(
                f"probe did not answer within {self.probe_timeout.total_seconds():.2f}s"
            ) from exc
