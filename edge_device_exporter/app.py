import logging
from socketserver import ThreadingMixIn
from typing import Callable, List, Optional, Tuple
from urllib.parse import parse_qs
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from prometheus_client import REGISTRY, CollectorRegistry, Info, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from . import __version__
from .client import parse_target
from .collector import new_collector
from .context import ScrapeContext
from .exposition import generate_text
from .logging_config import configure_logging
from .settings import Settings, get_settings

log = logging.getLogger(__name__)

_TEXT_PLAIN = "text/plain; charset=utf-8"

_BUILD_INFO = Info(
    "prometheus_ai_on_the_edge_device_exporter_build",
    "Build information about the AI-on-the-edge-device exporter.",
    registry=REGISTRY,
)
_BUILD_INFO.info({"version": __version__})

_INDEX_PAGE = """<html>
<head><title>AI-on-the-edge-device Exporter</title></head>
<body>
<h1>AI-on-the-edge-device Exporter</h1>
<p><a href="{metrics_path}">Metrics</a></p>
</body>
</html>
"""


def _http_response(start_response, status: str, headers: List[Tuple[str, str]], body: bytes):
    start_response(status, headers + [("Content-Length", str(len(body)))])
    return [body]


def _text_response(start_response, status: str, text: str):
    return _http_response(start_response, status, [("Content-Type", _TEXT_PLAIN)], text.encode("utf-8"))


def probe(environ, start_response, timeout: float):
    params = parse_qs(environ.get("QUERY_STRING", ""))
    target_raw = (params.get("target") or [""])[0]
    if not target_raw:
        return _text_response(start_response, "400 Bad Request", 'Missing "target" parameter\n')

    try:
        target = parse_target(target_raw)
    except ValueError as e:
        return _text_response(start_response, "400 Bad Request", f"Parsing target URL failed: {e}\n")

    # Per-request registry and collector (multi-target exporter pattern)
    context = ScrapeContext(timeout=timeout or None)
    registry = CollectorRegistry(auto_describe=False)
    collector = new_collector(context, target)
    registry.register(collector)

    output = generate_text(registry)
    if collector.error is not None:
        reason = " ".join(str(collector.error).split())
        header = f"# An error has occurred while serving metrics: {reason}\n".encode("utf-8")
        return _http_response(
            start_response,
            "500 Internal Server Error",
            [("Content-Type", CONTENT_TYPE_LATEST)],
            header + output,
        )

    return _http_response(start_response, "200 OK", [("Content-Type", CONTENT_TYPE_LATEST)], output)


def create_app(settings: Optional[Settings] = None) -> Callable:
    settings = settings or get_settings()

    def app(environ, start_response):
        path = environ.get("PATH_INFO", "/")
        try:
            if path == "/probe":
                return probe(environ, start_response, settings.scrape_timeout)

            if path == settings.telemetry_path:
                return _http_response(
                    start_response,
                    "200 OK",
                    [("Content-Type", CONTENT_TYPE_LATEST)],
                    generate_latest(REGISTRY),
                )

            if path == "/":
                page = _INDEX_PAGE.format(metrics_path=settings.telemetry_path)
                return _http_response(
                    start_response,
                    "200 OK",
                    [("Content-Type", "text/html; charset=utf-8")],
                    page.encode("utf-8"),
                )
        except Exception:
            log.exception("request failed", extra={"path": path})
            return _text_response(start_response, "500 Internal Server Error", "internal server error\n")

        return _text_response(start_response, "404 Not Found", "not found\n")

    return app


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _LoggingRequestHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        log.debug("%s - %s", self.address_string(), format % args)


def serve(settings: Settings) -> None:
    app = create_app(settings)
    with make_server(
        settings.listen_address,
        settings.listen_port,
        app,
        server_class=_ThreadingWSGIServer,
        handler_class=_LoggingRequestHandler,
    ) as httpd:
        log.info(
            "listening on %s:%d (scrape timeout %ss)",
            settings.listen_address,
            settings.listen_port,
            settings.scrape_timeout,
        )
        httpd.serve_forever()


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    try:
        serve(settings)
    except KeyboardInterrupt:
        log.info("shutting down")

