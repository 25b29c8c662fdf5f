"""Rebalance Scheduler - APScheduler integration for unattended rebalancing.

This module provides the automation loop:
- One interval job per configured wallet (check → plan → execute)
- At most one running instance per wallet job
- Consecutive-failure and critical-error circuit breakers
"""

from typing import Awaitable, Callable, Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from trade_agent.execution.base import RebalanceResult, SessionState
from trade_agent.utils.exceptions import ConfigurationError, VenueConnectionError
from trade_agent.utils.logging import get_logger

logger = get_logger(__name__)

# Returns None when the wallet did not need (or allow) a rebalance
RebalanceCycle = Callable[[str], Awaitable[Optional[RebalanceResult]]]

JOB_PREFIX = "rebalance:"


class RebalanceScheduler:
    """AsyncIOScheduler wrapper running one rebalance job per wallet.

    Args:
        cycle: Coroutine function running one check → plan → execute cycle
            for a wallet (TradeAgentAPI.auto_rebalance)
        config: The `scheduler` config section
            - interval_minutes: Minutes between cycles (default: 60)
            - cron: Optional cron fields used instead of the interval
            - timezone: Scheduler timezone (default: UTC)
            - max_consecutive_failures: Failures before a wallet's job is
              paused (default: 3)
            - misfire_grace_time: Seconds a late job may still run (default: 60)

    Example:
        >>> scheduler = RebalanceScheduler(api.auto_rebalance, config.section("scheduler"))
        >>> scheduler.add_wallet(wallet)
        >>> scheduler.start()
    """

    def __init__(self, cycle: RebalanceCycle, config: Optional[dict] = None):
        config = config or {}
        self.cycle = cycle
        self.config = config
        self.interval_minutes = config.get("interval_minutes", 60)
        self.max_consecutive_failures = config.get("max_consecutive_failures", 3)
        if self.interval_minutes <= 0:
            raise ConfigurationError(
                f"interval_minutes must be positive, got {self.interval_minutes}"
            )
        if self.max_consecutive_failures < 1:
            raise ConfigurationError(
                f"max_consecutive_failures must be >= 1, got {self.max_consecutive_failures}"
            )

        self.scheduler = AsyncIOScheduler(
            timezone=config.get("timezone", "UTC"),
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": config.get("misfire_grace_time", 60),
            },
        )

        self.failures: Dict[str, int] = {}
        self.last_results: Dict[str, RebalanceResult] = {}
        self.circuit_breaker_active = False

        self.scheduler.add_listener(
            self._on_job_event,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES,
        )

        logger.info(
            "RebalanceScheduler initialized (every %s minutes)", self.interval_minutes
        )

    def add_wallet(self, wallet: str) -> None:
        """Register (or replace) the periodic rebalance job for a wallet."""
        job_id = f"{JOB_PREFIX}{wallet}"
        if self.scheduler.get_job(job_id) is not None:
            logger.warning("Wallet '%s' already scheduled, replacing", wallet)

        self.scheduler.add_job(
            self.run_cycle,
            trigger=self._create_trigger(),
            args=[wallet],
            id=job_id,
            name=f"Rebalance {wallet}",
            replace_existing=True,
        )
        self.failures.setdefault(wallet, 0)
        logger.info("Scheduled rebalance job for %s", wallet)

    def add_wallets(self, wallets: List[str]) -> None:
        for wallet in wallets:
            self.add_wallet(wallet)

    def _create_trigger(self):
        cron = self.config.get("cron")
        if cron:
            return CronTrigger(**cron)
        return IntervalTrigger(minutes=self.interval_minutes)

    async def run_cycle(self, wallet: str) -> Optional[RebalanceResult]:
        """Run one cycle for a wallet, updating the failure counters.

        Session-level errors are logged and counted here so one wallet's
        failure never stops the scheduler.
        """
        if self.circuit_breaker_active:
            logger.warning("Circuit breaker active, skipping rebalance for %s", wallet)
            return None

        try:
            logger.info("Starting scheduled rebalance for %s", wallet)
            result = await self.cycle(wallet)
        except Exception as e:
            logger.error("Scheduled rebalance for %s failed: %s", wallet, e, exc_info=True)
            self._record_failure(wallet)
            if isinstance(e, VenueConnectionError):
                self.activate_circuit_breaker()
            return None

        if result is None:
            logger.info("No rebalance needed for %s", wallet)
            self.failures[wallet] = 0
            return None

        self.last_results[wallet] = result
        if result.state == SessionState.FAILED:
            self._record_failure(wallet)
        else:
            self.failures[wallet] = 0
        logger.info("Scheduled rebalance for %s: %s", wallet, result.summary())
        return result

    def _record_failure(self, wallet: str) -> None:
        self.failures[wallet] = self.failures.get(wallet, 0) + 1
        if self.failures[wallet] >= self.max_consecutive_failures:
            logger.error(
                "Wallet %s failed %d consecutive cycles, pausing its job",
                wallet,
                self.failures[wallet],
            )
            self.pause_wallet(wallet)

    def pause_wallet(self, wallet: str) -> None:
        job = self.scheduler.get_job(f"{JOB_PREFIX}{wallet}")
        if job is not None:
            job.pause()
            logger.info("Paused rebalance job for %s", wallet)

    def resume_wallet(self, wallet: str) -> None:
        """Resume a paused wallet job and reset its failure count."""
        job = self.scheduler.get_job(f"{JOB_PREFIX}{wallet}")
        if job is not None:
            job.resume()
            self.failures[wallet] = 0
            logger.info("Resumed rebalance job for %s", wallet)

    def activate_circuit_breaker(self) -> None:
        """Stop all rebalancing after a critical venue error."""
        logger.error("CIRCUIT BREAKER ACTIVATED - Pausing all rebalance jobs")
        self.circuit_breaker_active = True
        for job in self.scheduler.get_jobs():
            job.pause()

    def deactivate_circuit_breaker(self) -> None:
        logger.info("Circuit breaker deactivated - Resuming rebalance jobs")
        self.circuit_breaker_active = False
        for job in self.scheduler.get_jobs():
            job.resume()

    def _on_job_event(self, event) -> None:
        if event.code == EVENT_JOB_MAX_INSTANCES:
            logger.warning("Job '%s' still running, skipped this run", event.job_id)
        elif getattr(event, "exception", None):
            logger.error(
                "Job '%s' raised exception: %s",
                event.job_id,
                event.exception,
                exc_info=event.exception,
            )
        else:
            logger.debug("Job '%s' executed successfully", event.job_id)

    def start(self) -> None:
        """Start the scheduler on the running event loop."""
        if self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        jobs = self.scheduler.get_jobs()
        logger.info("Scheduler started with %d jobs", len(jobs))
        for job in jobs:
            logger.info("  - %s: next run at %s", job.id, getattr(job, "next_run_time", "N/A"))

    def stop(self, wait: bool = True) -> None:
        if not self.scheduler.running:
            logger.warning("Scheduler not running")
            return

        logger.info("Shutting down scheduler...")
        self.scheduler.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_jobs(self) -> list:
        return self.scheduler.get_jobs()
