"""Tests for the discovery polling loop."""

import queue
import threading
import time
from unittest.mock import MagicMock

import pytest
import responses

from prometheus_scw_sd.config import ScalewayConfig
from prometheus_scw_sd.daemon import Discovery, Ticker
from prometheus_scw_sd.discovery.models import Instance
from prometheus_scw_sd.discovery.scaleway_client import ScalewayClient
from prometheus_scw_sd.exceptions import ScalewayAPIError

INTERVAL = 0.05


def _inst(name, public_ip, arch="x86_64", zone_id="par1", tags=()):
    return Instance(name=name, public_ip=public_ip, private_ip="10.0.0.1", arch=arch, zone_id=zone_id, tags=tags)


class FakeClient:
    """Returns (or raises) the queued results in order, repeating the last one."""

    def __init__(self, *results):
        self._results = list(results)
        self.calls: list[float] = []

    def list_instances(self, fetch_all=True):
        assert fetch_all is True
        self.calls.append(time.monotonic())
        result = self._results.pop(0) if len(self._results) > 1 else self._results[0]
        if isinstance(result, Exception):
            raise result
        return list(result)


def _start(discovery, updates=None):
    stop = threading.Event()
    updates = updates if updates is not None else queue.Queue(maxsize=1)
    thread = threading.Thread(target=discovery.run, args=(stop, updates), daemon=True)
    thread.start()
    return stop, updates, thread


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestTicker:
    def test_waits_until_boundary(self):
        clock = FakeClock()
        ticker = Ticker(10, clock=clock)
        stop = MagicMock()
        stop.wait.return_value = False

        clock.now = 3.0
        assert ticker.wait(stop) is True
        stop.wait.assert_called_with(7.0)

    def test_missed_tick_fires_immediately_then_realigns(self):
        clock = FakeClock()
        ticker = Ticker(10, clock=clock)
        stop = MagicMock()
        stop.wait.return_value = False

        clock.now = 25.0
        assert ticker.wait(stop) is True
        stop.wait.assert_called_with(0.0)

        assert ticker.wait(stop) is True
        stop.wait.assert_called_with(5.0)

    def test_drain_skips_due_tick(self):
        clock = FakeClock()
        ticker = Ticker(10, clock=clock)
        stop = MagicMock()
        stop.wait.return_value = False

        clock.now = 12.0
        ticker.drain()
        ticker.wait(stop)
        stop.wait.assert_called_with(8.0)

    def test_drain_keeps_future_tick(self):
        clock = FakeClock()
        ticker = Ticker(10, clock=clock)
        stop = MagicMock()
        stop.wait.return_value = False

        clock.now = 4.0
        ticker.drain()
        ticker.wait(stop)
        stop.wait.assert_called_with(6.0)

    def test_returns_false_when_stopped(self):
        ticker = Ticker(10, clock=FakeClock())
        stop = MagicMock()
        stop.wait.return_value = True
        assert ticker.wait(stop) is False


class TestRunOnce:
    def test_returns_groups(self):
        client = FakeClient([
            _inst("a", "1.1.1.1", arch="x86", zone_id="z1", tags=("web",)),
            _inst("b", "2.2.2.2", arch="x86", zone_id="z1", tags=("web",)),
            _inst("c", "3.3.3.3", arch="arm", zone_id="z1"),
        ])
        groups = Discovery(client, refresh_interval=90, scrape_port=9100).run_once()
        assert [(g.source, g.addresses) for g in groups] == [
            ("a", ["1.1.1.1:9100", "2.2.2.2:9100"]),
            ("c", ["3.3.3.3:9100"]),
        ]

    def test_private_mode_and_port(self):
        client = FakeClient([_inst("a", "1.1.1.1")])
        groups = Discovery(client, 90, scrape_port=9273, use_private_ip=True).run_once()
        assert groups[0].addresses == ["10.0.0.1:9273"]

    def test_custom_tag_separator(self):
        client = FakeClient([_inst("a", "1.1.1.1", tags=("b", "a"))])
        groups = Discovery(client, 90, 9100, tag_separator="|").run_once()
        assert groups[0].labels.tags == "|a|b|"

    def test_propagates_provider_error(self):
        client = FakeClient(ScalewayAPIError("boom"))
        with pytest.raises(ScalewayAPIError):
            Discovery(client, 90, 9100).run_once()

    def test_logs_each_server(self, caplog):
        client = FakeClient([_inst("a", "1.1.1.1"), _inst("b", "2.2.2.2")])
        with caplog.at_level("INFO", logger="prometheus_scw_sd.daemon"):
            Discovery(client, 90, 9100).run_once()
        assert "Server found: a" in caplog.text
        assert "Server found: b" in caplog.text


class TestRun:
    def test_first_fetch_is_immediate(self):
        client = FakeClient([_inst("a", "1.1.1.1")])
        stop, updates, thread = _start(Discovery(client, refresh_interval=60, scrape_port=9100))
        try:
            groups = updates.get(timeout=2)
        finally:
            stop.set()
            thread.join(timeout=2)
        assert groups[0].addresses == ["1.1.1.1:9100"]
        assert not thread.is_alive()

    def test_publishes_every_tick(self):
        client = FakeClient([_inst("a", "1.1.1.1")])
        stop, updates, thread = _start(Discovery(client, INTERVAL, 9100))
        try:
            batches = [updates.get(timeout=2) for _ in range(3)]
        finally:
            stop.set()
            thread.join(timeout=2)
        assert len(batches) == 3
        assert all(b[0].addresses == ["1.1.1.1:9100"] for b in batches)
        # Every batch is a fresh list
        assert batches[0] is not batches[1]

    def test_fetch_error_publishes_nothing_and_backs_off(self, caplog):
        client = FakeClient(ScalewayAPIError("rate limited"), [_inst("a", "1.1.1.1")])
        with caplog.at_level("ERROR", logger="prometheus_scw_sd.daemon"):
            stop, updates, thread = _start(Discovery(client, INTERVAL, 9100))
            try:
                groups = updates.get(timeout=2)
            finally:
                stop.set()
                thread.join(timeout=2)

        assert groups[0].addresses == ["1.1.1.1:9100"]
        assert len(client.calls) >= 2
        # One extra interval of backoff on top of the regular tick
        assert client.calls[1] - client.calls[0] >= 2 * INTERVAL * 0.9
        assert "Error retrieving server list: rate limited" in caplog.text

    def test_keeps_retrying_after_repeated_failures(self):
        client = FakeClient(
            ScalewayAPIError("1"), ScalewayAPIError("2"), ScalewayAPIError("3"), [_inst("a", "1.1.1.1")],
        )
        stop, updates, thread = _start(Discovery(client, 0.01, 9100))
        try:
            groups = updates.get(timeout=2)
        finally:
            stop.set()
            thread.join(timeout=2)
        assert groups[0].source == "a"
        assert len(client.calls) >= 4

    def test_stop_between_ticks_ends_loop(self):
        client = FakeClient([_inst("a", "1.1.1.1")])
        stop, updates, thread = _start(Discovery(client, refresh_interval=60, scrape_port=9100))
        updates.get(timeout=2)

        stop.set()
        thread.join(timeout=2)

        assert not thread.is_alive()
        assert updates.empty()
        assert len(client.calls) == 1

    def test_stop_during_backoff_ends_loop(self):
        client = FakeClient(ScalewayAPIError("down"))
        stop, updates, thread = _start(Discovery(client, refresh_interval=60, scrape_port=9100))
        deadline = time.monotonic() + 2
        while not client.calls and time.monotonic() < deadline:
            time.sleep(0.01)

        stop.set()
        thread.join(timeout=2)

        assert not thread.is_alive()
        assert updates.empty()

    def test_stop_unblocks_pending_publish(self):
        client = FakeClient([_inst("a", "1.1.1.1")])
        updates = queue.Queue(maxsize=1)
        updates.put("unconsumed")
        stop, updates, thread = _start(Discovery(client, INTERVAL, 9100), updates)
        deadline = time.monotonic() + 2
        while not client.calls and time.monotonic() < deadline:
            time.sleep(0.01)

        stop.set()
        thread.join(timeout=2)

        assert not thread.is_alive()
        assert updates.get_nowait() == "unconsumed"
        assert updates.empty()

    @responses.activate
    def test_survives_malformed_provider_response(self):
        url = "https://api.scaleway.com/instance/v1/zones/fr-par-1/servers"
        responses.add(responses.GET, url, json={"servers": None})
        responses.add(
            responses.GET, url,
            json={"servers": [{"name": "web-1", "arch": "x86_64", "public_ip": {"address": "51.15.0.1"}}]},
            headers={"X-Total-Count": "1"},
        )
        client = ScalewayClient(ScalewayConfig(token="t", zones=["fr-par-1"]))
        stop, updates, thread = _start(Discovery(client, 0.01, 9100))
        try:
            groups = updates.get(timeout=2)
        finally:
            stop.set()
            thread.join(timeout=2)

        assert not thread.is_alive()
        assert groups[0].addresses == ["51.15.0.1:9100"]
        assert len(responses.calls) >= 2
