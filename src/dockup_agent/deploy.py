"""Per-application deploy coordination.

At most one deploy runs per application. A trigger that arrives while one is
in flight is dropped, not queued. Different applications deploy in parallel.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Set

from .configuration.models import AppRegistration
from .constants import DeployDefaults
from .error_handling import PipelineError, RemoteLookupError
from .metrics import MetricsSink
from .pipeline import CommandPipeline, PipelineResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeployResult:
    app_name: str
    deployment_type: str
    success: bool
    duration_seconds: float
    output: str = ""
    error: Optional[str] = None


class DeployCoordinator:
    """Serializes deploys per application name and reports their outcome.

    Locks are created on first use and kept for the life of the process, so
    the map grows with the number of distinct application names seen.
    """

    def __init__(self, pipeline: CommandPipeline, metrics: MetricsSink):
        self.pipeline = pipeline
        self.metrics = metrics
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._tasks: Set[asyncio.Task] = set()

    def lock_for(self, app_name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(app_name, threading.Lock())

    def is_deploying(self, app_name: str) -> bool:
        return self.lock_for(app_name).locked()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _try_acquire(self, app_name: str, source: str) -> Optional[threading.Lock]:
        lock = self.lock_for(app_name)
        if not lock.acquire(blocking=False):
            logger.info(
                f"⏳ Deploy already in progress for {app_name}, skipping...",
                extra={"app_name": app_name, "deployment_type": source},
            )
            self.metrics.emit("deployment_skipped", app_name, {"deployment_type": source})
            return None
        return lock

    def trigger(self, app_name: str, registration: AppRegistration, source: str) -> bool:
        """Start a background deploy unless one is already running.

        Must be called from the event loop thread. Returns True when the
        deploy was scheduled and False when it was skipped.
        """
        lock = self._try_acquire(app_name, source)
        if lock is None:
            return False

        try:
            task = asyncio.get_running_loop().create_task(
                self._run_locked(lock, app_name, registration, source)
            )
        except BaseException:
            lock.release()
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def deploy(self, app_name: str, registration: AppRegistration, source: str) -> Optional[DeployResult]:
        """Run a deploy inline; returns None when another one is in flight."""
        lock = self._try_acquire(app_name, source)
        if lock is None:
            return None
        return await self._run_locked(lock, app_name, registration, source)

    async def _run_locked(
        self,
        lock: threading.Lock,
        app_name: str,
        registration: AppRegistration,
        source: str,
    ) -> DeployResult:
        context = {"app_name": app_name, "deployment_type": source}
        try:
            started = time.monotonic()
            self.metrics.emit("deployment_started", app_name, {"deployment_type": source})
            logger.info(f"♻️  Starting deploy for {app_name}...", extra=context)

            try:
                result: PipelineResult = await self.pipeline.run(registration)
            except PipelineError as e:
                return self._failed(app_name, source, started, e.output.strip(), str(e))
            except RemoteLookupError as e:
                return self._failed(app_name, source, started, "", str(e))
            except asyncio.CancelledError:
                self._failed(app_name, source, started, "", "deploy cancelled")
                raise
            except Exception as e:
                logger.exception(f"❌ Unexpected error while deploying {app_name}", extra=context)
                return self._failed(app_name, source, started, "", f"{type(e).__name__}: {e}")

            duration = time.monotonic() - started
            logger.info(
                f"✅ Deploy SUCCESS for {app_name}",
                extra={**context, "duration_seconds": int(duration)},
            )
            self.metrics.emit(
                "deployment_success",
                app_name,
                {
                    "deployment_type": source,
                    "duration_seconds": int(duration),
                    "minutes_saved": DeployDefaults.MINUTES_SAVED_PER_DEPLOY,
                },
            )
            return DeployResult(
                app_name=app_name,
                deployment_type=source,
                success=True,
                duration_seconds=duration,
                output=result.output,
            )
        finally:
            lock.release()

    def _failed(self, app_name: str, source: str, started: float, output: str, error: str) -> DeployResult:
        duration = time.monotonic() - started
        logger.error(
            f"❌ Deploy FAILED for {app_name}: {error}\n{output}",
            extra={"app_name": app_name, "deployment_type": source, "duration_seconds": int(duration)},
        )
        self.metrics.emit(
            "deployment_failure",
            app_name,
            {
                "deployment_type": source,
                "duration_seconds": int(duration),
                "error_message": output or error,
            },
        )
        return DeployResult(
            app_name=app_name,
            deployment_type=source,
            success=False,
            duration_seconds=duration,
            output=output,
            error=error,
        )

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for every scheduled deploy to finish.

        Deploys still running after ``timeout`` seconds are cancelled, which
        kills their current step. Returns True when all of them completed.
        """
        if not self._tasks:
            return True
        _, still_running = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in still_running:
            logger.warning(f"⚠️  Cancelling deploy still running after {timeout}s")
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
        return not still_running
