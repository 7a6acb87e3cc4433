"""Background job runner: a dedicated asyncio loop for work detached from requests."""

import asyncio
import concurrent.futures
import threading
from typing import Any, Awaitable, Optional

from src.utils.logging import get_structured_logger, log_timing

logger = get_structured_logger(__name__)


class BackgroundJob:
    """Handle for a submitted job."""

    def __init__(self, name: str, future: concurrent.futures.Future):
        self.name = name
        self.future = future

    def done(self) -> bool:
        return self.future.done()

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the job finishes. Job errors are already handled."""
        self.future.result(timeout=timeout)


class BackgroundJobRunner:
    """
    Owns one event loop running on a daemon thread.

    Request handlers run on HTTP server threads. They use ``run`` for async
    work that must finish before the response is written and ``submit`` for
    work that continues after it. Submitted jobs run inside an error
    boundary: an exception is logged and never reaches the submitter.
    All async clients share this loop, so per-user asyncio locks work
    across requests.
    """

    def __init__(self, name: str = "background-jobs"):
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._pending: set[concurrent.futures.Future] = set()

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            loop = asyncio.new_event_loop()
            started = threading.Event()

            def _run_loop() -> None:
                asyncio.set_event_loop(loop)
                loop.call_soon(started.set)
                loop.run_forever()

            self._loop = loop
            self._thread = threading.Thread(target=_run_loop, name=self.name, daemon=True)
            self._thread.start()
            started.wait()
            logger.info("Background job loop started", runner=self.name)

    def run(self, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """Run a coroutine on the job loop and wait for its result."""
        self.start()
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(timeout=timeout)

    def submit(self, coro: Awaitable[Any], name: str) -> BackgroundJob:
        """Schedule a coroutine to run detached from the caller."""
        self.start()
        future = asyncio.run_coroutine_threadsafe(self._guarded(coro, name), self._loop)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        logger.debug("Background job submitted", job=name)
        return BackgroundJob(name, future)

    def _discard(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._pending.discard(future)

    async def _guarded(self, coro: Awaitable[Any], name: str) -> None:
        try:
            with log_timing("background_job", logger=logger, job=name):
                await coro
        except Exception as e:
            logger.error("Background job failed", job=name, error=str(e), exc_info=True)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for every submitted job to finish; False on timeout."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = concurrent.futures.wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True, timeout: Optional[float] = 30.0) -> None:
        """Optionally drain submitted jobs, then stop the loop."""
        if self._loop is None:
            return
        if wait and not self.wait_idle(timeout=timeout):
            logger.warning("Background jobs still running at shutdown", pending=self.pending_count())

        loop = self._loop
        loop.call_soon_threadsafe(loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=5)
        loop.close()

        with self._lock:
            self._loop = None
            self._thread = None
        logger.info("Background job loop stopped", runner=self.name)


_runner: Optional[BackgroundJobRunner] = None


def get_background_jobs() -> BackgroundJobRunner:
    """Get or create the process-wide job runner."""
    global _runner
    if _runner is None:
        _runner = BackgroundJobRunner()
    return _runner
