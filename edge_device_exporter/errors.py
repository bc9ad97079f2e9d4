from typing import Optional


class ExporterError(Exception):
    """Base class for everything that can go wrong during a scrape."""


class FetchError(ExporterError):
    def __init__(self, url: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"GET {url!r}: {message}")
        self.url = url
        self.cause = cause


class RequestFailedError(FetchError):
    def __init__(self, url: str, status_code: int, reason: str = ""):
        status = f"{status_code} {reason}".strip()
        super().__init__(url, f"request failed: {status}")
        self.status_code = status_code


class EmptyResponseError(FetchError):
    def __init__(self, url: str):
        super().__init__(url, "empty response")


class DecodeError(ExporterError):
    pass


class MissingDataError(ExporterError):
    pass


class ScrapeCancelledError(ExporterError):
    pass
