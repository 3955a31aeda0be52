"""Polling loop: list servers, group them, hand each snapshot to the writer."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable

from .discovery import InstanceLister
from .discovery.grouping import DEFAULT_TAG_SEPARATOR, build_target_groups
from .discovery.models import Instance, TargetGroup
from .exceptions import ScalewayAPIError

logger = logging.getLogger(__name__)

# How often a blocked publish re-checks the stop event.
_PUBLISH_POLL_SECONDS = 0.5


class Ticker:
    """Fixed-period ticker with boundaries at start + k * interval.

    Like a Go ticker it holds at most one missed tick: if a boundary passed
    while the caller was busy, the next wait() returns immediately and the
    schedule realigns to the following boundary.
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic):
        self._interval = interval
        self._clock = clock
        self._next = clock() + interval

    def wait(self, stop: threading.Event) -> bool:
        """Block until the next tick. Returns False if ``stop`` was set first."""
        timeout = max(0.0, self._next - self._clock())
        if stop.wait(timeout):
            return False
        self._advance()
        return True

    def drain(self) -> None:
        """Discard a tick that is already due."""
        if self._clock() >= self._next:
            self._advance()

    def _advance(self) -> None:
        now = self._clock()
        self._next += self._interval
        while self._next <= now:
            self._next += self._interval


class Discovery:
    """Discovers Scaleway servers on a fixed cadence and publishes target groups."""

    def __init__(
        self,
        client: InstanceLister,
        refresh_interval: float,
        scrape_port: int,
        tag_separator: str = DEFAULT_TAG_SEPARATOR,
        use_private_ip: bool = False,
    ):
        self._client = client
        self._interval = refresh_interval
        self._port = scrape_port
        self._tag_separator = tag_separator
        self._private = use_private_ip

    def run_once(self) -> list[TargetGroup]:
        """Execute a single discovery cycle and return its target groups."""
        groups, instances = self._refresh()
        self._log_instances(instances)
        return groups

    def run(self, stop: threading.Event, updates: queue.Queue) -> None:
        """Run until ``stop`` is set, putting one batch on ``updates`` per successful tick.

        The first fetch happens immediately. A failed fetch publishes nothing
        and waits one extra interval before the next regular tick.
        """
        logger.info("Discovery started, refreshing every %ss", self._interval)
        ticker = Ticker(self._interval)

        while True:
            try:
                groups, instances = self._refresh()
            except ScalewayAPIError as exc:
                logger.error("Error retrieving server list: %s", exc)
                if stop.wait(self._interval):
                    break
                ticker.drain()
            else:
                if not self._publish(groups, updates, stop):
                    break
                self._log_instances(instances)

            if not ticker.wait(stop):
                break

        logger.info("Discovery stopped")

    def _refresh(self) -> tuple[list[TargetGroup], list[Instance]]:
        start = time.monotonic()
        instances = self._client.list_instances(fetch_all=True)
        groups = build_target_groups(
            instances,
            self._port,
            use_private_ip=self._private,
            tag_separator=self._tag_separator,
        )
        logger.info(
            "Refresh complete",
            extra={
                "total_instances": len(instances),
                "groups": len(groups),
                "elapsed_seconds": round(time.monotonic() - start, 2),
            },
        )
        return groups, instances

    @staticmethod
    def _publish(groups: list[TargetGroup], updates: queue.Queue, stop: threading.Event) -> bool:
        """Blocking send; gives up only when ``stop`` is set."""
        while not stop.is_set():
            try:
                updates.put(groups, timeout=_PUBLISH_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    @staticmethod
    def _log_instances(instances: list[Instance]) -> None:
        for inst in instances:
            logger.info("Server found: %s", inst.name, extra={"zone": inst.zone_id})
