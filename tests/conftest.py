import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Iterator, List, Tuple, Union

import pytest
from prometheus_client.parser import text_string_to_metric_families

from edge_device_exporter.context import ScrapeContext

SYSINFO = [
    {
        "firmware": "v15.3.0",
        "buildtime": "2023-07-22 09:42",
        "gitbranch": "HEAD",
        "gittag": "v15.3.0",
        "gitrevision": "3fbff0a",
        "html": "Release: v15.3.0 (Commit: 3fbff0a)",
        "cputemp": "50",
        "hostname": "device123",
        "IPv4": "192.0.2.1",
        "freeHeapMem": "10623",
    }
]

FLOWS = {
    "main": {
        "value": "9.876",
        "error": "no error",
        "timestamp": "2000-01-02T10:11:12+1300",
    },
    "second": {
        "value": "",
        "raw": "00013.501",
        "pre": "13.564",
        "error": "Neg. Rate - Read:  - Raw: 00013.501 - Pre: 13.564 ",
        "rate": "",
        "timestamp": "2000-01-02T20:21:22+0100",
    },
}

Body = Union[str, bytes, list, dict]


class DeviceServer:
    """Canned per-path responses served from a real local HTTP server."""

    def __init__(self):
        self.url = ""
        self.routes: Dict[str, Tuple[int, bytes, List[Tuple[str, str]]]] = {}
        self.requests: List[Tuple[str, Dict[str, str]]] = []
        self._lock = threading.Lock()

    def route(self, path: str, body: Body = b"", status: int = 200, headers=None) -> None:
        content_type = "text/plain"
        if isinstance(body, (list, dict)):
            body = json.dumps(body)
            content_type = "application/json"
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[path] = (status, body, [("Content-Type", content_type)] + list(headers or []))

    def healthy(self) -> "DeviceServer":
        self.route("/sysinfo", SYSINFO)
        self.route("/rssi", "-90")
        self.route("/json", FLOWS)
        return self

    @property
    def paths(self) -> List[str]:
        with self._lock:
            return [path for path, _ in self.requests]

    def handler(self):
        server = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                path = self.path.split("?", 1)[0]
                with server._lock:
                    server.requests.append((path, dict(self.headers.items())))
                status, body, headers = server.routes.get(path, (404, b"404 page not found\n", []))
                self.send_response(status)
                for name, value in headers:
                    self.send_header(name, value)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format, *args):
                pass

        return Handler


@pytest.fixture
def device_server() -> Iterator[DeviceServer]:
    server = DeviceServer()
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), server.handler())
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    server.url = f"http://127.0.0.1:{httpd.server_address[1]}"
    try:
        yield server
    finally:
        httpd.shutdown()
        httpd.server_close()
        thread.join(timeout=5)


@pytest.fixture
def context() -> ScrapeContext:
    return ScrapeContext(timeout=60)


@pytest.fixture
def unused_url() -> str:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"http://127.0.0.1:{port}"


def exposition_samples(text: str) -> Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float]:
    samples = {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            samples[(sample.name, tuple(sorted(sample.labels.items())))] = sample.value
    return samples


def observation_key(obs) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
    return obs.name, tuple(sorted(obs.labels.items()))
