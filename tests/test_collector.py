import threading

import pytest
from conftest import exposition_samples, observation_key
from prometheus_client import CollectorRegistry

from edge_device_exporter import collector as collector_module
from edge_device_exporter import metrics
from edge_device_exporter.client import DeviceClient, parse_target
from edge_device_exporter.collector import COMPLETED, FAILED, IDLE, RUNNING, DeviceCollector, Scrape, new_collector
from edge_device_exporter.context import ScrapeContext
from edge_device_exporter.errors import MissingDataError, RequestFailedError
from edge_device_exporter.exposition import generate_text
from edge_device_exporter.extractors import collect_rssi
from edge_device_exporter.metrics import Observation

PREFIX = "ai_on_the_edge_device_"


def _scrape(url: str, context: ScrapeContext, extractors=None) -> Scrape:
    return Scrape(context, DeviceClient(parse_target(url)), extractors)


def test_scrape_completes(device_server, context) -> None:
    device_server.healthy()
    scrape = _scrape(device_server.url, context)
    assert scrape.state == IDLE

    observed = {observation_key(o): o.value for o in scrape.run()}

    assert scrape.state == COMPLETED
    assert scrape.error is None
    assert observed[(PREFIX + "rssi_dbm", ())] == -90
    assert observed[(PREFIX + "cpu_temperature_celsius", ())] == 50
    assert observed[(PREFIX + "flow_success", (("name", "second"),))] == 0
    assert len(observed) == 12
    assert sorted(device_server.paths) == ["/json", "/rssi", "/sysinfo"]


def test_scrape_runs_once(device_server, context) -> None:
    device_server.healthy()
    scrape = _scrape(device_server.url, context)
    list(scrape.run())

    with pytest.raises(RuntimeError, match="already completed"):
        list(scrape.run())


def test_scrape_keeps_observations_from_before_failure(device_server, context) -> None:
    device_server.route("/rssi", "-90")
    rssi_done = threading.Event()

    def rssi(client, ctx, emit):
        collect_rssi(client, ctx, emit)
        rssi_done.set()

    def failing(client, ctx, emit):
        rssi_done.wait(10)
        raise RequestFailedError(client.url("/sysinfo"), 418)

    scrape = _scrape(device_server.url, context, [rssi, failing])
    observed = [o.name for o in scrape.run()]

    assert observed == [PREFIX + "rssi_dbm"]
    assert scrape.state == FAILED
    assert isinstance(scrape.error, RequestFailedError)


def test_scrape_surfaces_first_error_and_cancels_others(context) -> None:
    cancelled = threading.Event()

    def failing(client, ctx, emit):
        raise MissingDataError("sysinfo missing from response")

    def slow(client, ctx, emit):
        while not ctx.done:
            threading.Event().wait(0.01)
        cancelled.set()
        ctx.check()

    scrape = _scrape("http://192.0.2.1", context, [failing, slow])
    assert list(scrape.run()) == []

    assert cancelled.is_set()
    assert isinstance(scrape.error, MissingDataError)
    # the parent context belongs to the probe and stays usable
    assert not context.done


def test_scrape_stops_when_consumer_stops(context) -> None:
    released = threading.Event()

    def chatty(client, ctx, emit):
        emit(Observation(metrics.RSSI, -1))
        while not ctx.done:
            released.wait(0.01)
        released.set()

    scrape = _scrape("http://192.0.2.1", context, [chatty])
    stream = scrape.run()
    assert next(stream).value == -1
    assert scrape.state == RUNNING
    stream.close()

    assert released.is_set()
    assert scrape.state == FAILED
    assert scrape.error is None
    with pytest.raises(RuntimeError, match="already failed"):
        next(scrape.run())


def test_scrape_deadline() -> None:
    def stuck(client, ctx, emit):
        while not ctx.done:
            threading.Event().wait(0.01)
        ctx.check()

    scrape = _scrape("http://192.0.2.1", ScrapeContext(timeout=0.1), [stuck])
    list(scrape.run())

    assert scrape.state == FAILED
    assert "deadline exceeded" in str(scrape.error)


def test_max_workers_bounded(monkeypatch) -> None:
    monkeypatch.setattr(collector_module.os, "cpu_count", lambda: 64)
    assert collector_module._max_workers(3) == 3

    monkeypatch.setattr(collector_module.os, "cpu_count", lambda: None)
    assert collector_module._max_workers(3) == 1


def _render(device_collector: DeviceCollector) -> str:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(device_collector)
    return generate_text(registry).decode("utf-8")


def test_device_collector_exposition(device_server, context) -> None:
    device_server.healthy()
    device_collector = new_collector(context, parse_target(device_server.url))

    text = _render(device_collector)
    # the text parser renames counter samples, so the counter is checked line by line
    samples = {key: value for key, value in exposition_samples(text).items() if "flow_value" not in key[0]}

    assert device_collector.error is None
    assert samples == {
        (PREFIX + "firmware_info", (("gitrevision", "3fbff0a"), ("gittag", "v15.3.0"), ("version", "v15.3.0"))): 1,
        (PREFIX + "network_info", (("hostname", "device123"), ("ipv4", "192.0.2.1"))): 1,
        (PREFIX + "cpu_temperature_celsius", ()): 50,
        (PREFIX + "memory_heap_free_bytes", ()): 10623,
        (PREFIX + "rssi_dbm", ()): -90,
        (PREFIX + "flow_success", (("name", "main"),)): 1,
        (PREFIX + "flow_success", (("name", "second"),)): 0,
        (PREFIX + "flow_error_info", (("message", ""), ("name", "main"))): 1,
        (
            PREFIX + "flow_error_info",
            (("message", "Neg. Rate - Read:  - Raw: 00013.501 - Pre: 13.564"), ("name", "second")),
        ): 1,
        (PREFIX + "flow_timestamp_seconds", (("name", "main"),)): 946761072,
        (PREFIX + "flow_timestamp_seconds", (("name", "second"),)): 946840882,
    }
    lines = text.splitlines()
    assert f"# HELP {PREFIX}flow_value Most recent value." in lines
    assert f"# TYPE {PREFIX}flow_value counter" in lines
    assert f'{PREFIX}flow_value{{name="main"}} 9.876' in lines
    assert "_total" not in text
    assert f"# HELP {PREFIX}rssi_dbm WiFi signal strength in dBm." in lines
    assert f"# TYPE {PREFIX}rssi_dbm gauge" in lines


def test_device_collector_error_indicator(device_server, context) -> None:
    device_server.healthy()
    device_server.route("/sysinfo", [])
    device_collector = new_collector(context, parse_target(device_server.url))

    samples = exposition_samples(_render(device_collector))

    assert isinstance(device_collector.error, MissingDataError)
    assert samples[(PREFIX + "error", ())] == 1


def test_register_does_not_scrape(device_server, context) -> None:
    device_server.healthy()
    registry = CollectorRegistry(auto_describe=False)
    registry.register(new_collector(context, parse_target(device_server.url)))

    assert device_server.requests == []
