"""Typed views of the device's JSON/text payloads.

The device encodes numbers as quoted strings and leaves out fields it does
not support, so every optional numeric field goes through ``decode_number``.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import DecodeError, MissingDataError
from .metrics import MetricDesc, Observation

# Absent from the payload, as opposed to present with a null value.
MISSING = object()

TIMESTAMP_LAYOUT = "%Y-%m-%dT%H:%M:%S%z"

_FLOAT_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_TIMESTAMP_RE = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[+-]\d{4}")

NO_ERROR = "no error"


def parse_float(text: str) -> float:
    if not _FLOAT_RE.fullmatch(text):
        raise ValueError(f"invalid syntax: {text!r}")
    return float(text)


def decode_number(name: str, raw: Any) -> Optional[float]:
    if raw is MISSING or raw is None:
        return None
    if not isinstance(raw, str):
        raise DecodeError(f"{name}: expected a string, got {type(raw).__name__}")
    if raw == "":
        return None
    try:
        return parse_float(raw)
    except ValueError as e:
        raise DecodeError(f"{name}: {e}") from e


def collect_number(
    emit: Callable[[Observation], None],
    name: str,
    desc: MetricDesc,
    raw: Any,
    *label_values: str,
) -> None:
    value = decode_number(name, raw)
    if value is None:
        return
    emit(Observation(desc, value, tuple(label_values)))


def parse_timestamp(text: str) -> int:
    """Parse ``YYYY-MM-DDTHH:MM:SS+HHMM`` into Unix seconds."""
    # strptime's %z also accepts "Z" and "+HH:MM"; the device never sends those
    if not _TIMESTAMP_RE.fullmatch(text):
        raise DecodeError(f"timestamp {text!r} does not match layout {TIMESTAMP_LAYOUT!r}")
    try:
        ts = datetime.strptime(text, TIMESTAMP_LAYOUT)
    except ValueError as e:
        raise DecodeError(f"timestamp {text!r}: {e}") from e
    return int(ts.timestamp())


def _field(obj: Dict[str, Any], key: str) -> Any:
    # exact match first, then case-insensitive; the device sends "IPv4"
    if key in obj:
        return obj[key]
    lowered = key.lower()
    for k, v in obj.items():
        if k.lower() == lowered:
            return v
    return MISSING


def _string_field(obj: Dict[str, Any], key: str) -> str:
    v = _field(obj, key)
    if v is MISSING or v is None:
        return ""
    if not isinstance(v, str):
        raise DecodeError(f"{key}: expected a string, got {type(v).__name__}")
    return v


@dataclass(frozen=True)
class DeviceInfoRecord:
    firmware: str
    git_tag: str
    git_revision: str
    hostname: str
    ipv4: str
    cpu_temp: Any = MISSING
    free_heap_mem: Any = MISSING

    @classmethod
    def from_payload(cls, payload: Any) -> "DeviceInfoRecord":
        if not isinstance(payload, list):
            raise DecodeError(f"sysinfo: expected an array, got {type(payload).__name__}")
        if len(payload) < 1:
            raise MissingDataError("sysinfo missing from response")
        data = payload[0]
        if not isinstance(data, dict):
            raise DecodeError(f"sysinfo: expected an object, got {type(data).__name__}")
        return cls(
            firmware=_string_field(data, "firmware"),
            git_tag=_string_field(data, "gittag"),
            git_revision=_string_field(data, "gitrevision"),
            hostname=_string_field(data, "hostname"),
            ipv4=_string_field(data, "ipv4"),
            cpu_temp=_field(data, "cputemp"),
            free_heap_mem=_field(data, "freeHeapMem"),
        )


@dataclass(frozen=True)
class SignalRecord:
    dbm: float

    @classmethod
    def from_text(cls, text: str) -> "SignalRecord":
        tokens = text.split()
        if not tokens:
            raise MissingDataError("RSSI value missing")
        if len(tokens) > 1:
            raise DecodeError(f"RSSI: expected a single value, got {len(tokens)} tokens")
        try:
            return cls(parse_float(tokens[0]))
        except ValueError as e:
            raise DecodeError(f"RSSI: {e}") from e


@dataclass(frozen=True)
class FlowRecord:
    name: str
    value: Any = MISSING
    error: str = ""
    timestamp: str = ""

    @classmethod
    def from_payload(cls, name: str, data: Any) -> "FlowRecord":
        if data is None:
            return cls(name)
        if not isinstance(data, dict):
            raise DecodeError(f"expected an object, got {type(data).__name__}")
        return cls(
            name=name,
            value=_field(data, "value"),
            error=_string_field(data, "error"),
            timestamp=_string_field(data, "timestamp"),
        )

    def status(self) -> Tuple[int, str]:
        """Return (success, message) derived from the free-text error field."""
        message = self.error.strip()
        if message in ("", NO_ERROR):
            return 1, ""
        return 0, message


def flows_from_payload(payload: Any) -> List[FlowRecord]:
    if not isinstance(payload, dict):
        raise DecodeError(f"flows: expected an object, got {type(payload).__name__}")
    flows = []
    for name, data in payload.items():
        try:
            flows.append(FlowRecord.from_payload(name, data))
        except DecodeError as e:
            raise DecodeError(f"flow {name!r}: {e}") from e
    return flows
