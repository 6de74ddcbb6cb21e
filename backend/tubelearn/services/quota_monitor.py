"""
Provider Quota Monitor

Admission control for metered providers. Every charged provider call is
appended to the provider_usage_events ledger; admission decisions sum the
ledger over a trailing window and compare it against the provider's limit.

Behavior:
- can_process() is a pure read. It fails open: if the ledger can't be read,
  the call is allowed.
- record_usage() is called only after a provider call succeeded (and was
  therefore charged). Crossing the warning or critical ratio emits log
  signals, and at critical an ops alert notification is queued. Thresholds
  never block admission; only the hard limit in can_process() does.
- Providers without a configured limit are always admitted.

Usage:
    from tubelearn.services.quota_monitor import QuotaMonitor

    monitor = QuotaMonitor()
    decision = await monitor.can_process("groq", estimated_units=620.0)
    if decision.allowed:
        ...
        await monitor.record_usage("groq", units=620.0, cost=0.124)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tubelearn.config import ProcessingSettings, processing_settings
from tubelearn.db.models import ProviderUsageEvent
from tubelearn.enums import NotificationTemplateKey, QuotaLevel

if TYPE_CHECKING:
    from tubelearn.services.notifications.queue import NotificationQueue

logger = logging.getLogger(__name__)


@dataclass
class AdmissionDecision:
    """
    Outcome of an admission check.

    Attributes:
        allowed: Whether the work may be submitted to the provider
        current_usage: Units consumed in the trailing window
        limit: Provider limit for the window (None when unmetered)
        reason: Short machine-readable explanation
    """

    allowed: bool
    current_usage: float
    limit: Optional[float]
    reason: str = "ok"


@dataclass
class ProviderUsageWindow:
    """Aggregated usage of one provider over the trailing window."""

    provider: str
    window_start: datetime
    consumed_units: float
    limit_units: Optional[float]

    @property
    def usage_ratio(self) -> Optional[float]:
        if not self.limit_units:
            return None
        return self.consumed_units / self.limit_units


class QuotaMonitor:
    """
    Rolling-window quota accounting for transcription and LLM providers.

    Args:
        session_maker: Factory for database sessions
        config: Processing settings (limits, window, thresholds)
        notification_queue: Queue used for critical-usage alerts
        alert_recipient: Address that receives quota alerts
    """

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        config: Optional[ProcessingSettings] = None,
        notification_queue: Optional["NotificationQueue"] = None,
        alert_recipient: Optional[str] = None,
    ) -> None:
        if session_maker is None:
            from tubelearn.db.base import async_session_maker

            session_maker = async_session_maker
        self.session_maker = session_maker
        self.config = config or processing_settings
        self.notification_queue = notification_queue
        self.alert_recipient = alert_recipient

    # =========================================================================
    # Admission
    # =========================================================================

    def get_limit(self, provider: str) -> Optional[float]:
        """Configured units per window for a provider, or None if unmetered."""
        return self.config.QUOTA_PROVIDER_LIMITS.get(provider)

    def _window_start(self) -> datetime:
        return datetime.now(timezone.utc) - timedelta(seconds=self.config.QUOTA_WINDOW_SECONDS)

    async def _sum_usage(self, session: AsyncSession, provider: str, since: datetime) -> float:
        result = await session.execute(
            select(func.coalesce(func.sum(ProviderUsageEvent.units), 0.0)).where(
                ProviderUsageEvent.provider == provider,
                ProviderUsageEvent.created_at >= since,
            )
        )
        return float(result.scalar_one() or 0.0)

    async def get_usage_window(self, provider: str) -> ProviderUsageWindow:
        """
        Aggregate a provider's usage over the trailing window.

        Args:
            provider: Provider name (e.g. "groq")

        Returns:
            ProviderUsageWindow with consumed units and the configured limit
        """
        window_start = self._window_start()
        async with self.session_maker() as session:
            consumed = await self._sum_usage(session, provider, window_start)

        return ProviderUsageWindow(
            provider=provider,
            window_start=window_start,
            consumed_units=consumed,
            limit_units=self.get_limit(provider),
        )

    async def can_process(self, provider: str, estimated_units: float) -> AdmissionDecision:
        """
        Decide whether `estimated_units` of work fit in the provider's window.

        Args:
            provider: Provider name
            estimated_units: Expected usage of the call (e.g. audio seconds)

        Returns:
            AdmissionDecision; allowed when current + estimated <= limit
        """
        limit = self.get_limit(provider)
        if limit is None:
            return AdmissionDecision(allowed=True, current_usage=0.0, limit=None, reason="unmetered")

        try:
            window = await self.get_usage_window(provider)
        except Exception as e:
            logger.error(f"Quota check failed for {provider}, allowing request: {e}")
            return AdmissionDecision(
                allowed=True, current_usage=0.0, limit=limit, reason="monitor_unavailable"
            )

        current = window.consumed_units
        if current + estimated_units > limit:
            logger.warning(
                f"Admission denied for {provider}: {current:.0f} used + "
                f"{estimated_units:.0f} requested > {limit:.0f} limit"
            )
            return AdmissionDecision(
                allowed=False, current_usage=current, limit=limit, reason="quota_exceeded"
            )

        return AdmissionDecision(allowed=True, current_usage=current, limit=limit)

    # =========================================================================
    # Recording
    # =========================================================================

    async def record_usage(
        self,
        provider: str,
        units: float,
        cost: float = 0.0,
        operation: str = "transcription",
        job_id: Optional[Any] = None,
    ) -> None:
        """
        Append a charged usage event and evaluate warning thresholds.

        Failures are logged and swallowed; losing one ledger row must not
        fail a transcription that already succeeded.

        Args:
            provider: Provider name
            units: Units consumed (audio seconds or tokens)
            cost: Cost in USD
            operation: Kind of call ("transcription", "llm_completion")
            job_id: Job the usage is attributed to
        """
        try:
            async with self.session_maker() as session:
                session.add(
                    ProviderUsageEvent(
                        provider=provider,
                        operation=operation,
                        units=units,
                        cost_usd=cost,
                        job_id=job_id,
                    )
                )
                await session.commit()

            logger.debug(f"Recorded usage: {provider}/{operation} {units:.1f} units ${cost:.4f}")
        except Exception as e:
            logger.error(f"Failed to record usage for {provider}: {e}")
            return

        if self.get_limit(provider) is not None:
            await self._check_thresholds(provider)

    async def _check_thresholds(self, provider: str) -> None:
        try:
            window = await self.get_usage_window(provider)
        except Exception as e:
            logger.error(f"Quota threshold check failed for {provider}: {e}")
            return

        ratio = window.usage_ratio
        if ratio is None:
            return

        percentage = round(ratio * 100, 1)
        if ratio >= self.config.QUOTA_CRITICAL_RATIO:
            logger.error(
                f"CRITICAL: {provider} usage at {percentage}% "
                f"({window.consumed_units:.0f}/{window.limit_units:.0f})"
            )
            await self._send_alert(window, QuotaLevel.CRITICAL, percentage)
        elif ratio >= self.config.QUOTA_WARNING_RATIO:
            logger.warning(
                f"WARNING: {provider} usage at {percentage}% "
                f"({window.consumed_units:.0f}/{window.limit_units:.0f})"
            )

    async def _send_alert(self, window: ProviderUsageWindow, level: QuotaLevel, percentage: float) -> None:
        if not (self.notification_queue and self.alert_recipient):
            return

        try:
            await self.notification_queue.enqueue(
                recipient=self.alert_recipient,
                template_key=NotificationTemplateKey.QUOTA_WARNING.value,
                variables={
                    "provider": window.provider,
                    "level": level.value,
                    "percentage": percentage,
                    "current_usage": round(window.consumed_units),
                    "limit": round(window.limit_units or 0),
                    "window_minutes": self.config.QUOTA_WINDOW_SECONDS // 60,
                    "is_critical": level == QuotaLevel.CRITICAL,
                },
            )
        except Exception as e:
            logger.error(f"Failed to queue quota alert for {window.provider}: {e}")

    # =========================================================================
    # Reporting and maintenance
    # =========================================================================

    async def get_usage_statistics(self, days: int = 7) -> list[dict[str, Any]]:
        """
        Summarize usage per provider and operation.

        Args:
            days: Look-back period

        Returns:
            Rows of {provider, operation, total_units, total_cost_usd, events}
        """
        since = datetime.now(timezone.utc) - timedelta(days=days)
        async with self.session_maker() as session:
            result = await session.execute(
                select(
                    ProviderUsageEvent.provider,
                    ProviderUsageEvent.operation,
                    func.sum(ProviderUsageEvent.units),
                    func.sum(ProviderUsageEvent.cost_usd),
                    func.count(ProviderUsageEvent.id),
                )
                .where(ProviderUsageEvent.created_at >= since)
                .group_by(ProviderUsageEvent.provider, ProviderUsageEvent.operation)
                .order_by(ProviderUsageEvent.provider)
            )
            rows = result.all()

        return [
            {
                "provider": provider,
                "operation": operation,
                "total_units": float(units or 0.0),
                "total_cost_usd": float(cost or 0.0),
                "events": count,
            }
            for provider, operation, units, cost, count in rows
        ]

    async def cleanup_old_usage(self, days_to_keep: Optional[int] = None) -> int:
        """
        Delete usage events older than the retention period.

        Args:
            days_to_keep: Retention in days (defaults to USAGE_RETENTION_DAYS)

        Returns:
            Number of deleted events
        """
        days = days_to_keep if days_to_keep is not None else self.config.USAGE_RETENTION_DAYS
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        async with self.session_maker() as session:
            result = await session.execute(
                delete(ProviderUsageEvent).where(ProviderUsageEvent.created_at < cutoff)
            )
            await session.commit()

        deleted = result.rowcount or 0
        logger.info(f"Deleted {deleted} usage events older than {days} days")
        return deleted
