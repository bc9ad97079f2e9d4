from typing import Callable

from . import metrics
from .client import DeviceClient
from .context import ScrapeContext
from .errors import DecodeError
from .metrics import Observation
from .records import DeviceInfoRecord, FlowRecord, SignalRecord, collect_number, flows_from_payload, parse_timestamp

Emit = Callable[[Observation], None]
Extractor = Callable[[DeviceClient, ScrapeContext, Emit], None]


def collect_sysinfo(client: DeviceClient, context: ScrapeContext, emit: Emit) -> None:
    data = DeviceInfoRecord.from_payload(client.get_json("/sysinfo", context))

    emit(Observation(metrics.FIRMWARE_INFO, 1, (data.firmware, data.git_tag, data.git_revision)))
    emit(Observation(metrics.NETWORK_INFO, 1, (data.hostname, data.ipv4)))

    collect_number(emit, "cputemp", metrics.CPU_TEMPERATURE, data.cpu_temp)
    collect_number(emit, "freeHeapMem", metrics.MEMORY_HEAP_FREE, data.free_heap_mem)


def collect_rssi(client: DeviceClient, context: ScrapeContext, emit: Emit) -> None:
    data = SignalRecord.from_text(client.get_text("/rssi", context))
    emit(Observation(metrics.RSSI, data.dbm))


def collect_flow(flow: FlowRecord, emit: Emit) -> None:
    collect_number(emit, "value", metrics.FLOW_VALUE, flow.value, flow.name)

    # The error text is always exported so the last message stays queryable
    # until the device reports a different one.
    success, message = flow.status()
    emit(Observation(metrics.FLOW_SUCCESS, success, (flow.name,)))
    emit(Observation(metrics.FLOW_ERROR_INFO, 1, (flow.name, message)))

    if flow.timestamp:
        emit(Observation(metrics.FLOW_TIMESTAMP, parse_timestamp(flow.timestamp), (flow.name,)))


def collect_flows(client: DeviceClient, context: ScrapeContext, emit: Emit) -> None:
    for flow in flows_from_payload(client.get_json("/json", context)):
        try:
            collect_flow(flow, emit)
        except DecodeError as e:
            raise DecodeError(f"flow {flow.name!r}: {e}") from e


EXTRACTORS = (collect_sysinfo, collect_rssi, collect_flows)
