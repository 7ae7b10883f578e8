"""Thread-pool batch runner for file and pair analyses."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from OSCAR.config import Config
from OSCAR.src.core.algorithms import MeasurementOrchestrator
from OSCAR.src.core.types import FileResult, ImageSource, PairResult

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BatchState:
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class BatchWorker:
    """Runs independent analyses on a fixed-size pool, keeping submission order.

    One worker may serve several batches at once (e.g. concurrent uploads);
    every batch carries its own stop event and the reported state is derived
    from the batches still active.
    """

    def __init__(self, config: Config, max_workers: Optional[int] = None, plot_dir: Optional[Path] = None):
        self.config = config
        self.max_workers = max(1, int(max_workers if max_workers is not None else config.WORKER_COUNT))
        self.orchestrator = MeasurementOrchestrator(config, plot_dir)
        self._active: list[threading.Event] = []
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            if not self._active:
                return BatchState.IDLE
            if all(stop.is_set() for stop in self._active):
                return BatchState.STOPPING
            return BatchState.RUNNING

    @property
    def stop_requested(self) -> bool:
        with self._lock:
            return any(stop.is_set() for stop in self._active)

    def request_stop(self) -> None:
        """Stop submitting new inputs to every active batch; in-flight analyses run to completion."""
        with self._lock:
            active = list(self._active)
        for stop in active:
            stop.set()
        logger.info("Stop requested for %d active batch(es)", len(active))

    def _run(self, items: Iterable[T], fn: Callable[[T], R]) -> list[R]:
        stop = threading.Event()
        with self._lock:
            self._active.append(stop)
        futures: list[Future] = []
        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                for item in items:
                    if stop.is_set():
                        logger.info("Batch stop requested; %d input(s) submitted", len(futures))
                        break
                    futures.append(pool.submit(fn, item))
                return [f.result() for f in futures]
        finally:
            with self._lock:
                self._active.remove(stop)

    def run_files(self, sources: Sequence[ImageSource], mode: str, quantity: str = "voltage") -> list[FileResult]:
        # Surface an unknown mode/quantity before anything is queued.
        self.config.phase_config(quantity, mode)
        if mode == "power":
            raise ValueError("Power mode needs voltage/current pairs; use run_pairs")
        return self._run(sources, lambda src: self.orchestrator.analyze_file(src, mode, quantity))

    def run_pairs(self, pairs: Sequence[tuple[ImageSource, ImageSource]]) -> list[PairResult]:
        return self._run(pairs, lambda pair: self.orchestrator.analyze_pair(pair[0], pair[1]))
