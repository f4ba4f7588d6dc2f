"""
Pending subscription changes job.

WHAT: Pushes deferred seat changes to the billing provider shortly before
the subscription renews.

WHY: A seat change scheduled for the next cycle must reach the provider
early enough to apply at renewal, but must not bill mid-cycle. The job
therefore only touches subscriptions renewing strictly between 24h and 48h
from now and patches the quantity with prorations disabled.

HOW: Runs every few hours (APScheduler or the cron endpoint):
1. Select unsynced pending changes inside the renewal window
2. For each, in order: PATCH the item quantity, then compare-and-swap
   ``quantity_synced = True`` and record an info alert
3. A failure is isolated to its subscription: a critical alert, an entry
   in ``errors``, and the loop moves on
4. Return a per-run summary instead of raising

A provider timeout is an unknown outcome. The row stays unsynced so the
next run pushes the same quantity again, which is idempotent.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.core.config import settings
from seatsync.core.exceptions import AppException, ProviderError, ProviderTimeoutError
from seatsync.dao.subscription import SubscriptionDAO
from seatsync.db.session import AsyncSessionLocal
from seatsync.middleware.request_context import new_correlation_id
from seatsync.services.alert_service import AlertService
from seatsync.services.lemonsqueezy_client import LemonSqueezyClient, get_provider_client

logger = logging.getLogger(__name__)

JOB_NAME = "apply_pending_subscription_changes"


@dataclass(frozen=True)
class PendingChange:
    """Plain copy of the row fields the job needs, read once per run."""

    subscription_id: int
    organization_id: int
    provider_subscription_id: Optional[str]
    item_id: Optional[str]
    current_seats: int
    pending_seats: int
    version: int
    renews_at: Optional[datetime]

    @property
    def context(self) -> Dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "organization_id": self.organization_id,
            "provider_subscription_id": self.provider_subscription_id,
            "current_seats": self.current_seats,
            "pending_seats": self.pending_seats,
            "renews_at": self.renews_at.isoformat() if self.renews_at else None,
        }


class PendingChangesJob:
    """
    Applies pending seat changes ahead of renewal.

    Args:
        session: Session to run in (the cron endpoint passes its request
            session); without one, each run opens its own
        client: Provider client; built from settings when omitted
        client_factory: Used to build the client when ``client`` is None
        delay_seconds: Pause between provider calls
    """

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        client: Optional[LemonSqueezyClient] = None,
        client_factory: Callable[[], LemonSqueezyClient] = get_provider_client,
        delay_seconds: Optional[float] = None,
    ):
        self._session = session
        self._client = client
        self._client_factory = client_factory
        self.delay_seconds = (
            settings.PENDING_SYNC_DELAY_SECONDS if delay_seconds is None else delay_seconds
        )

    def _get_client(self) -> LemonSqueezyClient:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    async def run(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Execute one run.

        Args:
            now: Reference time for the renewal window (defaults to utcnow)

        Returns:
            Summary with ``processed``, ``failed``, ``results`` and ``errors``
        """
        if self._session is not None:
            return await self._run(self._session, now)

        async with AsyncSessionLocal() as session:
            return await self._run(session, now)

    async def _run(self, session: AsyncSession, now: Optional[datetime]) -> Dict[str, Any]:
        correlation_id = new_correlation_id("pending-sync")
        current = now or datetime.utcnow()
        window_start = current + timedelta(hours=settings.PENDING_SYNC_WINDOW_START_HOURS)
        window_end = current + timedelta(hours=settings.PENDING_SYNC_WINDOW_END_HOURS)

        dao = SubscriptionDAO(session)
        alerts = AlertService(session)

        candidates = [
            PendingChange(
                subscription_id=sub.id,
                organization_id=sub.organization_id,
                provider_subscription_id=sub.provider_subscription_id,
                item_id=sub.provider_subscription_item_id,
                current_seats=sub.current_seats,
                pending_seats=sub.pending_seats,
                version=sub.version,
                renews_at=sub.renews_at,
            )
            for sub in await dao.get_pending_sync_candidates(window_start, window_end)
        ]
        logger.info(
            f"[{correlation_id}] {len(candidates)} pending seat changes renew between "
            f"{window_start.isoformat()} and {window_end.isoformat()}"
        )

        results: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        if candidates:
            client = self._get_client()

        for index, change in enumerate(candidates):
            if index > 0 and self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)

            outcome = await self._apply(session, dao, alerts, client, change, correlation_id)
            if outcome["status"] == "success":
                results.append(outcome)
            else:
                errors.append(outcome)
            await session.commit()

        logger.info(
            f"[{correlation_id}] Pending changes run finished: "
            f"{len(results)} synced, {len(errors)} failed"
        )
        return {
            "success": True,
            "message": "Pending subscription changes processed",
            "timestamp": datetime.utcnow().isoformat(),
            "correlation_id": correlation_id,
            "window_start": window_start.isoformat(),
            "window_end": window_end.isoformat(),
            "processed": len(results),
            "failed": len(errors),
            "results": results,
            "errors": errors,
        }

    async def _apply(
        self,
        session: AsyncSession,
        dao: SubscriptionDAO,
        alerts: AlertService,
        client: LemonSqueezyClient,
        change: PendingChange,
        correlation_id: str,
    ) -> Dict[str, Any]:
        context = change.context
        try:
            item_id = change.item_id or await self._resolve_item_id(dao, client, change)
            await client.update_subscription_item(
                item_id,
                change.pending_seats,
                disable_prorations=True,
            )
        except ProviderTimeoutError as e:
            await alerts.send_critical(
                f"Pending seat push for subscription {change.subscription_id} timed out; "
                f"outcome unknown, will retry next run",
                {**context, "outcome": "unknown"},
                job=JOB_NAME,
                correlation_id=correlation_id,
            )
            return {**context, "status": "unknown", "error": e.message}
        except AppException as e:
            logger.error(
                f"[{correlation_id}] Failed to push pending seats for subscription "
                f"{change.subscription_id}: {e.message}"
            )
            await alerts.send_critical(
                f"Failed to apply pending seat change for subscription {change.subscription_id}",
                {**context, "error": e.message},
                job=JOB_NAME,
                correlation_id=correlation_id,
            )
            return {**context, "status": "error", "error": e.message}

        if not await self._mark_synced(dao, change):
            await alerts.send_critical(
                f"Pending seats for subscription {change.subscription_id} were pushed "
                f"but changed locally before they could be marked synced",
                context,
                job=JOB_NAME,
                correlation_id=correlation_id,
            )
            return {**context, "status": "error", "error": "pending seats changed concurrently"}

        await alerts.send_info(
            f"Pending seat change synced for subscription {change.subscription_id}: "
            f"{change.current_seats} -> {change.pending_seats} at renewal",
            context,
            job=JOB_NAME,
            correlation_id=correlation_id,
        )
        return {**context, "status": "success"}

    async def _resolve_item_id(
        self, dao: SubscriptionDAO, client: LemonSqueezyClient, change: PendingChange
    ) -> str:
        if not change.provider_subscription_id:
            raise ProviderError(
                message="Subscription is not linked to the billing provider",
                subscription_id=change.subscription_id,
            )
        provider_subscription = await client.get_subscription(change.provider_subscription_id)
        if not provider_subscription.subscription_item_id:
            raise ProviderError(
                message="Billing provider returned no subscription item",
                subscription_id=change.subscription_id,
            )
        await dao.set_item_id(change.subscription_id, provider_subscription.subscription_item_id)
        return provider_subscription.subscription_item_id

    async def _mark_synced(self, dao: SubscriptionDAO, change: PendingChange) -> bool:
        """
        Compare-and-swap ``quantity_synced``.

        Retries while the row still carries the pushed pending count; gives
        up if another writer changed or cleared it in the meantime.
        """
        expected_version = change.version
        for _ in range(settings.SEAT_WRITE_MAX_RETRIES):
            if await dao.compare_and_set(
                change.subscription_id, expected_version, quantity_synced=True
            ):
                return True

            latest = await dao.get_fresh(change.subscription_id)
            if latest is None or latest.pending_seats != change.pending_seats:
                return False
            if latest.quantity_synced:
                return True
            expected_version = latest.version
        return False
