"""
Background polling of projections.

ProjectionRunner keeps projections close to the head of the ledger by
calling ``Projector.catch_up_all`` in a loop. It runs independently of the
append path: appends never wait for it, and it only adds an eventual
consistency window that ``Projector.get_lag`` reports.
"""

from __future__ import annotations

import asyncio
import logging

from eventledger.projections.projector import CatchUpResult, Projector

logger = logging.getLogger(__name__)


class ProjectionRunner:
    """
    Continuously polls the ledger and catches up all projections.

    Stopping sets a cancel signal that the projector checks between events,
    so a long catch-up ends promptly with its progress committed. A round
    that fails (the projection store is down, say) is logged and the loop
    keeps going, waiting longer after each consecutive failure.

    Example:
        >>> runner = ProjectionRunner(projector, poll_interval=0.5)
        >>> runner.start()
        >>> # ... appends happen elsewhere ...
        >>> await runner.stop()
    """

    def __init__(
        self,
        projector: Projector,
        *,
        poll_interval: float = 1.0,
        max_backoff: float = 30.0,
    ) -> None:
        """
        Args:
            projector: Projector whose projections are kept current
            poll_interval: Seconds between polling rounds
            max_backoff: Upper bound in seconds of the delay after failed rounds
        """
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {poll_interval}")
        if max_backoff <= 0:
            raise ValueError(f"max_backoff must be > 0, got {max_backoff}")
        self._projector = projector
        self._poll_interval = poll_interval
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._iterations = 0
        self._last_results: dict[str, CatchUpResult] = {}
        self._max_backoff = max_backoff
        self._consecutive_failures = 0
        self._last_error: Exception | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def iterations(self) -> int:
        """Completed polling rounds."""
        return self._iterations

    @property
    def consecutive_failures(self) -> int:
        """Failed rounds since the last successful one."""
        return self._consecutive_failures

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    @property
    def last_results(self) -> dict[str, CatchUpResult]:
        return dict(self._last_results)

    async def run_once(self) -> dict[str, CatchUpResult]:
        """Run one polling round and return the per-projection results."""
        results = await self._projector.catch_up_all(cancel_event=self._stop_event)
        self._last_results = results
        self._iterations += 1
        return results

    def start(self) -> asyncio.Task[None]:
        """
        Start polling in a background task.

        Raises:
            RuntimeError: If the runner is already running
        """
        if self.is_running:
            raise RuntimeError("Projection runner already running")
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="eventledger-projection-runner")
        return self._task

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it to finish."""
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await self._task
        finally:
            self._task = None

    async def _run(self) -> None:
        logger.info(
            "Projection runner started",
            extra={
                "projections": self._projector.projection_names,
                "poll_interval": self._poll_interval,
            },
        )
        try:
            while not self._stop_event.is_set():
                try:
                    await self.run_once()
                except Exception as e:
                    self._consecutive_failures += 1
                    self._last_error = e
                    logger.error(
                        "Projection runner round failed: %s",
                        e,
                        exc_info=True,
                        extra={
                            "error_type": type(e).__name__,
                            "consecutive_failures": self._consecutive_failures,
                        },
                    )
                else:
                    self._consecutive_failures = 0
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._next_delay())
                except TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Projection runner cancelled")
            raise
        finally:
            logger.info(
                "Projection runner stopped",
                extra={"iterations": self._iterations},
            )

    def _next_delay(self) -> float:
        if not self._consecutive_failures:
            return self._poll_interval
        backoff = self._poll_interval * 2 ** min(self._consecutive_failures, 16)
        return min(backoff, max(self._max_backoff, self._poll_interval))


__all__ = ["ProjectionRunner"]
