from dataclasses import dataclass, field
from typing import Dict, Tuple

METRIC_NAME_PREFIX = "ai_on_the_edge_device_"

GAUGE = "gauge"
COUNTER = "counter"


@dataclass(frozen=True)
class MetricDesc:
    name: str
    documentation: str
    labels: Tuple[str, ...] = ()
    kind: str = GAUGE

    @property
    def full_name(self) -> str:
        return METRIC_NAME_PREFIX + self.name


@dataclass(frozen=True)
class Observation:
    desc: MetricDesc
    value: float
    label_values: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if len(self.label_values) != len(self.desc.labels):
            raise ValueError(
                f"{self.desc.full_name}: expected {len(self.desc.labels)} label values, "
                f"got {len(self.label_values)}"
            )

    @property
    def name(self) -> str:
        return self.desc.full_name

    @property
    def kind(self) -> str:
        return self.desc.kind

    @property
    def labels(self) -> Dict[str, str]:
        return dict(zip(self.desc.labels, self.label_values))


ERROR = MetricDesc("error", "Metrics collection failed.")

FIRMWARE_INFO = MetricDesc("firmware_info", "Firmware metadata.", ("version", "gittag", "gitrevision"))
NETWORK_INFO = MetricDesc("network_info", "Network metadata.", ("hostname", "ipv4"))
RSSI = MetricDesc("rssi_dbm", "WiFi signal strength in dBm.")
CPU_TEMPERATURE = MetricDesc("cpu_temperature_celsius", "CPU temperature in degrees celsius.")
MEMORY_HEAP_FREE = MetricDesc("memory_heap_free_bytes", "Bytes available on the heap.")

FLOW_VALUE = MetricDesc("flow_value", "Most recent value.", ("name",), COUNTER)
FLOW_SUCCESS = MetricDesc("flow_success", "Whether digitization was successful.", ("name",))
FLOW_ERROR_INFO = MetricDesc("flow_error_info", "Error encountered during digitization.", ("name", "message"))
FLOW_TIMESTAMP = MetricDesc("flow_timestamp_seconds", "Timestamp of the most recent digitization.", ("name",))

DESCRIPTORS = (
    FIRMWARE_INFO,
    NETWORK_INFO,
    RSSI,
    CPU_TEMPERATURE,
    MEMORY_HEAP_FREE,
    FLOW_VALUE,
    FLOW_SUCCESS,
    FLOW_ERROR_INFO,
    FLOW_TIMESTAMP,
)
