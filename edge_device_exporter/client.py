import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator
from urllib.parse import SplitResult, urlsplit, urlunsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .context import ScrapeContext
from .errors import DecodeError, EmptyResponseError, FetchError, RequestFailedError

log = logging.getLogger(__name__)

CONNECT_TIMEOUT = 30.0
READ_TIMEOUT = 30.0
# Number of distinct device hosts whose connection pools are kept around.
POOL_CONNECTIONS = 10

# How often a task waiting for the device's connection slot re-checks for
# cancellation.
_SLOT_POLL_SECONDS = 0.1


def _requests_session() -> requests.Session:
    s = requests.Session()
    # No retries and no redirects: a failed probe is simply reported.
    retries = Retry(total=0, read=False, redirect=False, raise_on_status=False)
    # The device's HTTP server is single-threaded, so one connection per host.
    adapter = HTTPAdapter(
        pool_connections=POOL_CONNECTIONS,
        pool_maxsize=1,
        pool_block=True,
        max_retries=retries,
    )
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    s.headers["Accept-Encoding"] = "identity"
    return s


class _HostLimiter:
    """One connection slot per device host, shared by every probe.

    A host's slot is forgotten as soon as nobody holds or waits for it, so
    the map only ever contains hosts with requests in flight.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._slots: Dict[str, threading.Semaphore] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def _checkout(self, host: str) -> threading.Semaphore:
        with self._lock:
            sem = self._slots.get(host)
            if sem is None:
                sem = self._slots[host] = threading.BoundedSemaphore(1)
            self._users[host] = self._users.get(host, 0) + 1
            return sem

    def _checkin(self, host: str) -> None:
        with self._lock:
            self._users[host] -= 1
            if not self._users[host]:
                del self._users[host]
                del self._slots[host]

    @contextmanager
    def hold(self, host: str, context: ScrapeContext) -> Iterator[None]:
        sem = self._checkout(host)
        try:
            while True:
                context.check()
                remaining = context.remaining()
                wait = _SLOT_POLL_SECONDS if remaining is None else min(_SLOT_POLL_SECONDS, remaining)
                if sem.acquire(timeout=wait):
                    break
            try:
                yield
            finally:
                sem.release()
        finally:
            self._checkin(host)


_HTTP = _requests_session()
_LIMITER = _HostLimiter()


def parse_target(raw: str) -> SplitResult:
    """Split a probe target URL.

    Only syntax is checked here. A target without a usable scheme or host
    parses fine and fails when the device is fetched.
    """
    if raw.startswith(":"):
        raise ValueError("missing protocol scheme")
    # raises ValueError on unbalanced IPv6 brackets
    target = urlsplit(raw)
    # raises ValueError on a malformed port
    target.port
    return target


class DeviceClient:
    def __init__(self, target: SplitResult, http: requests.Session = _HTTP, limiter: _HostLimiter = _LIMITER):
        self.target = target
        self.http = http
        self.limiter = limiter
        self._host = f"{target.scheme}://{target.netloc.lower()}"

    def url(self, path: str) -> str:
        base = self.target.path.rstrip("/")
        return urlunsplit(self.target._replace(path=f"{base}/{path.lstrip('/')}", fragment=""))

    def get(self, path: str, context: ScrapeContext) -> requests.Response:
        url = self.url(path)
        with self.limiter.hold(self._host, context):
            start = time.monotonic()
            # the slot wait may have outlived the scrape
            context.check()
            try:
                resp = self.http.get(
                    url,
                    timeout=(context.clamp(CONNECT_TIMEOUT), context.clamp(READ_TIMEOUT)),
                    allow_redirects=False,
                )
            except requests.RequestException as e:
                raise FetchError(url, str(e), cause=e) from e

        log.debug(
            "device request finished",
            extra={
                "target": self._host,
                "path": path,
                "status": resp.status_code,
                "duration_ms": round((time.monotonic() - start) * 1000, 1),
            },
        )
        if not 200 <= resp.status_code < 300:
            raise RequestFailedError(url, resp.status_code, resp.reason or "")
        return resp

    def get_json(self, path: str, context: ScrapeContext) -> Any:
        resp = self.get(path, context)
        if not resp.content:
            raise EmptyResponseError(resp.url or self.url(path))
        try:
            return resp.json()
        except ValueError as e:
            raise DecodeError(f"JSON decoder: {e}") from e

    def get_text(self, path: str, context: ScrapeContext) -> str:
        return self.get(path, context).text
