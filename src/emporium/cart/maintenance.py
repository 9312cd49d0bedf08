"""Scheduled maintenance for carts.

``prune_abandoned_carts`` removes carts nobody has touched for a while, for
every tenant at once. ``MaintenanceScheduler`` runs such jobs periodically
inside the service process.

Usage:
    scheduler = create_maintenance_scheduler()
    await scheduler.start()
    ...
    await scheduler.stop()
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from emporium.config.settings import CartConfig, get_settings
from emporium.core.context import platform_scope
from emporium.core.logging import LogContext, get_logger
from emporium.db.config import get_interceptor
from emporium.db.driver import IsolationLevel
from emporium.db.models.audit import AuditAction, AuditLog
from emporium.db.models.cart import Cart, CartItem
from emporium.db.tenancy import TenancyInterceptor

logger = get_logger(__name__)

Job = Callable[[], Awaitable[Any]]


async def prune_abandoned_carts(db: TenancyInterceptor, days_old: int | None = None) -> int:
    """Delete carts (and their lines) not updated for ``days_old`` days.

    Runs in platform scope so carts of every tenant are considered, and in a
    single transaction so a cart is never left without its lines or vice
    versa. An audit entry records each non-empty run.

    Args:
        db: Interceptor to issue operations through
        days_old: Inactivity threshold (default: CART__PRUNE_AFTER_DAYS)

    Returns:
        Number of carts removed
    """
    if days_old is None:
        days_old = get_settings().cart.prune_after_days
    if days_old < 1:
        raise ValueError(f"days_old must be at least 1, got {days_old}")

    cutoff = datetime.now(UTC) - timedelta(days=days_old)
    stale_filter = {"updated_at": {"lt": cutoff}}

    with platform_scope("abandoned cart pruning"):
        async with db.transaction(IsolationLevel.SERIALIZABLE) as tx:
            stale = await tx.find_many(Cart, stale_filter)
            if not stale:
                return 0

            cart_ids = [cart.id for cart in stale]
            lines = await tx.delete_many(CartItem, {"cart_id": {"in": cart_ids}})
            carts = await tx.delete_many(Cart, {**stale_filter, "id": {"in": cart_ids}})
            await tx.create(
                AuditLog,
                {
                    "action": AuditAction.CART_PRUNED.value,
                    "resource_type": "cart",
                    "payload": {
                        "removed_carts": carts.count,
                        "removed_items": lines.count,
                        "days_old": days_old,
                        "cutoff": cutoff.isoformat(),
                    },
                },
            )

    logger.info("abandoned_carts_pruned", removed_carts=carts.count, removed_items=lines.count, days_old=days_old)
    return carts.count


@dataclass
class JobStatus:
    """Bookkeeping for one registered job."""

    name: str
    interval_seconds: float
    runs: int = 0
    failures: int = 0
    last_run_at: datetime | None = None
    last_result: Any = None
    last_error: str | None = None


class MaintenanceScheduler:
    """Runs registered maintenance jobs on fixed intervals.

    Each job gets its own asyncio task. A failing run is logged and the job
    runs again at its next interval.

    Example:
        scheduler = MaintenanceScheduler()
        scheduler.register_job("prune_abandoned_carts", job, interval_seconds=86400)
        await scheduler.start()
        # ...
        await scheduler.stop()
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._status: dict[str, JobStatus] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def register_job(self, name: str, job: Job, interval_seconds: float) -> None:
        """Register ``job`` to run every ``interval_seconds``."""
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self._jobs[name] = job
        self._status[name] = JobStatus(name=name, interval_seconds=interval_seconds)
        logger.info("maintenance_job_registered", job=name, interval_seconds=interval_seconds)

    def get_status(self, name: str) -> JobStatus:
        return self._status[name]

    async def run_once(self, name: str) -> Any:
        """Run one job now, recording and logging failures instead of raising.

        Returns:
            The job's result, or None when it failed
        """
        status = self._status[name]
        status.runs += 1
        status.last_run_at = datetime.now(UTC)

        with LogContext(job=name):
            try:
                result = await self._jobs[name]()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                status.failures += 1
                status.last_error = str(e)
                logger.error("maintenance_job_failed", error_type=type(e).__name__, error=str(e))
                return None

        status.last_result = result
        status.last_error = None
        return result

    async def start(self) -> None:
        """Start one loop task per registered job."""
        if self._running:
            logger.warning("maintenance_scheduler_already_running")
            return

        self._running = True
        for name in self._jobs:
            self._tasks[name] = asyncio.create_task(self._loop(name), name=f"maintenance_{name}")
        logger.info("maintenance_scheduler_started", jobs=len(self._tasks))

    async def stop(self) -> None:
        """Cancel all job loops and wait for them to finish."""
        if not self._running:
            return

        self._running = False
        for task in self._tasks.values():
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

        self._tasks.clear()
        logger.info("maintenance_scheduler_stopped")

    async def _loop(self, name: str) -> None:
        interval = self._status[name].interval_seconds
        while self._running:
            try:
                await asyncio.sleep(interval)
                if self._running:
                    await self.run_once(name)
            except asyncio.CancelledError:
                break


def create_maintenance_scheduler(config: CartConfig | None = None) -> MaintenanceScheduler:
    """Build a scheduler with the cart pruning job registered.

    Each run opens its own database session.
    """
    config = config or get_settings().cart

    async def prune() -> int:
        async with get_interceptor() as db:
            return await prune_abandoned_carts(db, config.prune_after_days)

    scheduler = MaintenanceScheduler()
    scheduler.register_job("prune_abandoned_carts", prune, config.prune_interval_seconds)
    return scheduler
