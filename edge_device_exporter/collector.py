"""Scrape orchestration and the prometheus_client adapter around it.

A ``Scrape`` runs every extractor concurrently against one device and yields
observations as they arrive. The first extractor failure cancels the others;
observations produced before that point are kept.
"""
import logging
import os
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterator, List, Optional, Sequence
from urllib.parse import SplitResult, urlunsplit

from prometheus_client.core import Metric
from prometheus_client.registry import Collector

from . import metrics
from .client import DeviceClient
from .context import ScrapeContext
from .extractors import EXTRACTORS, Emit, Extractor
from .metrics import MetricDesc, Observation

log = logging.getLogger(__name__)

IDLE = "idle"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"

# Marks the end of one extractor's output on the shared queue.
_DONE = object()


def _max_workers(tasks: int) -> int:
    return max(1, min(tasks, os.cpu_count() or 1))


class Scrape:
    def __init__(
        self,
        context: ScrapeContext,
        client: DeviceClient,
        extractors: Optional[Sequence[Extractor]] = None,
    ):
        self.context = context
        self.client = client
        self.extractors = tuple(extractors or EXTRACTORS)
        self.state = IDLE
        self.error: Optional[BaseException] = None
        self._error_lock = threading.Lock()

    @property
    def target(self) -> str:
        return urlunsplit(self.client.target)

    def _fail(self, context: ScrapeContext, err: BaseException) -> None:
        with self._error_lock:
            if self.error is not None:
                return
            self.error = err
        context.cancel(f"scrape cancelled: {err}")

    def _task(self, extractor: Extractor, context: ScrapeContext, emit: Emit, out: "queue.Queue") -> None:
        try:
            extractor(self.client, context, emit)
        except Exception as e:
            self._fail(context, e)
        finally:
            out.put(_DONE)

    def run(self) -> Iterator[Observation]:
        if self.state != IDLE:
            raise RuntimeError(f"scrape already {self.state}")
        self.state = RUNNING

        context = self.context.child()
        out: "queue.Queue" = queue.Queue()
        pending = len(self.extractors)
        executor = ThreadPoolExecutor(
            max_workers=_max_workers(pending),
            thread_name_prefix="scrape",
        )
        try:
            for extractor in self.extractors:
                executor.submit(self._task, extractor, context, out.put, out)

            while pending:
                item = out.get()
                if item is _DONE:
                    pending -= 1
                    continue
                yield item
        finally:
            # Reached early only when the consumer stopped iterating.
            if pending:
                context.cancel()
            executor.shutdown(wait=True)
            self._finish(stopped=bool(pending))

    def _finish(self, stopped: bool) -> None:
        if self.error is not None:
            self.state = FAILED
            log.warning("scrape failed: %s", self.error, extra={"target": self.target})
        elif stopped:
            self.state = FAILED
            log.debug("scrape stopped before completion", extra={"target": self.target})
        else:
            self.state = COMPLETED


def _family(desc: MetricDesc) -> Metric:
    return Metric(desc.full_name, desc.documentation, desc.kind)


def _add_sample(family: Metric, obs: Observation) -> None:
    family.add_sample(obs.name, obs.labels, obs.value)


class DeviceCollector(Collector):
    """Exposes one ``Scrape`` through a prometheus_client registry."""

    def __init__(self, scrape: Scrape):
        self.scrape = scrape

    @property
    def error(self) -> Optional[BaseException]:
        return self.scrape.error

    def describe(self) -> List[Metric]:
        return [_family(desc) for desc in (metrics.ERROR,) + metrics.DESCRIPTORS]

    def collect(self) -> Iterator[Metric]:
        families: Dict[str, Metric] = {}
        count = 0
        for obs in self.scrape.run():
            family = families.get(obs.name)
            if family is None:
                family = families[obs.name] = _family(obs.desc)
            _add_sample(family, obs)
            count += 1

        if self.scrape.error is not None:
            family = families[metrics.ERROR.full_name] = _family(metrics.ERROR)
            _add_sample(family, Observation(metrics.ERROR, 1))
        else:
            log.debug("scrape completed", extra={"target": self.scrape.target, "observations": count})

        yield from families.values()


def new_collector(context: ScrapeContext, target: SplitResult) -> DeviceCollector:
    return DeviceCollector(Scrape(context, DeviceClient(target)))
