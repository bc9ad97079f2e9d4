"""Text exposition for the per-request registry.

``prometheus_client.generate_latest`` renames every counter family to
``<name>_total``. Families collected for a ``/probe`` request are written
out under their own names, so ``flow_value`` stays ``flow_value``.
"""
from typing import Dict

from prometheus_client.registry import Collector
from prometheus_client.utils import floatToGoString

_TYPE_NAMES = {"unknown": "untyped"}


def _escape_help(text: str) -> str:
    return text.replace("\\", r"\\").replace("\n", r"\n")


def _escape_label_value(value: str) -> str:
    return value.replace("\\", r"\\").replace("\n", r"\n").replace('"', r"\"")


def _label_string(labels: Dict[str, str]) -> str:
    if not labels:
        return ""
    pairs = ",".join(f'{k}="{_escape_label_value(v)}"' for k, v in sorted(labels.items()))
    return "{" + pairs + "}"


def generate_text(registry: Collector) -> bytes:
    output = []
    for metric in registry.collect():
        output.append(f"# HELP {metric.name} {_escape_help(metric.documentation)}\n")
        output.append(f"# TYPE {metric.name} {_TYPE_NAMES.get(metric.type, metric.type)}\n")
        for s in metric.samples:
            output.append(f"{s.name}{_label_string(s.labels)} {floatToGoString(s.value)}\n")
    return "".join(output).encode("utf-8")
