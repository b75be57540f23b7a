import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..core.models import ScanStatus
from ..errors import ScannerClientError, TransientNetworkFailure

logger = logging.getLogger(__name__)

POLL_INTERVAL = 2.0


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    JOB_RUNNING = "job_running"
    JOB_FINISHED = "job_finished"


class ScanStatusPoller:
    """
    Polls GET /api/status on a fixed interval until stopped.

    When a job is seen finishing (running is false, progress > 0) and no
    results have been loaded for it yet, `on_finished` is awaited exactly
    once. A new running job re-arms the trigger. Failed polls are logged
    and the next tick simply tries again.
    """

    def __init__(self, client, on_finished: Callable[[], Awaitable[None]],
                 interval: float = POLL_INTERVAL, sleep: Callable = asyncio.sleep) -> None:
        self.client = client
        self.on_finished = on_finished
        self.interval = interval
        self._sleep = sleep
        self.state = PollerState.IDLE
        self.status: Optional[ScanStatus] = None
        self.loads_triggered = 0
        self._loaded = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if not self.running:
            self.state = PollerState.POLLING
            self._task = asyncio.create_task(self._run(), name="scan-status-poller")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error("Status poller had already failed: %r", e)
        self.state = PollerState.IDLE

    def mark_loaded(self) -> None:
        """Record that results are already on screen, so a finished job needs no load."""
        self._loaded = True

    def rearm(self) -> None:
        """Allow the next finished job to trigger a load again."""
        self._loaded = False

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await self._sleep(self.interval)

    async def poll_once(self) -> Optional[ScanStatus]:
        try:
            status = await self.client.get_status()
        except TransientNetworkFailure as e:
            logger.warning("Status check failed: %s", e.message)
            return None
        self.status = status
        await self._advance(status)
        return status

    async def _advance(self, status: ScanStatus) -> None:
        if status.running:
            if self.state is not PollerState.JOB_RUNNING:
                logger.info("Scan running (%d/%d)", status.progress, status.total)
                self._loaded = False
            self.state = PollerState.JOB_RUNNING
            return

        if status.progress > 0 and not self._loaded:
            self.state = PollerState.JOB_FINISHED
            logger.info("Scan finished, loading latest results")
            try:
                await self.on_finished()
            except ScannerClientError as e:
                logger.error("Failed to load results: %s", e.message)
            except ValueError as e:
                logger.error("Failed to load results: malformed payload: %s", e)
            else:
                self._loaded = True
                self.loads_triggered += 1

        self.state = PollerState.POLLING
