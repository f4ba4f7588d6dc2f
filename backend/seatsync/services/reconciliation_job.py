"""
Subscription reconciliation job.

WHAT: Daily audit comparing each subscription's local seat count with the
quantity the billing provider reports.

WHY: Webhooks get lost or delayed, and a timed-out seat change has an
unknown outcome. This job is the safety net that surfaces any resulting
drift. It never corrects anything: either side can be right at a given
moment (a change may still be propagating), so a mismatch is escalated to
a human as a critical alert.

HOW:
1. Load active and trialing subscriptions linked to the provider
2. Fetch each from the provider, one at a time, pausing between calls
3. Match: count it. Mismatch: critical alert with both values and the
   difference. Fetch failure: warning alert, keep going
4. When everything matched, one summary info alert for the whole run

The job reads subscription rows and writes only alerts.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.core.config import settings
from seatsync.core.exceptions import AppException
from seatsync.dao.subscription import SubscriptionDAO
from seatsync.db.session import AsyncSessionLocal
from seatsync.middleware.request_context import new_correlation_id
from seatsync.services.alert_service import AlertService
from seatsync.services.lemonsqueezy_client import LemonSqueezyClient, get_provider_client

logger = logging.getLogger(__name__)

JOB_NAME = "reconcile_subscriptions"


class ReconciliationJob:
    """
    Detects drift between local and provider seat counts.

    Args:
        session: Session to run in; without one, each run opens its own
        client: Provider client; built from settings when omitted
        client_factory: Used to build the client when ``client`` is None
        delay_seconds: Pause between provider calls (rate limiting)
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
            settings.RECONCILIATION_DELAY_SECONDS if delay_seconds is None else delay_seconds
        )

    def _get_client(self) -> LemonSqueezyClient:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    async def run(self) -> Dict[str, Any]:
        """
        Execute one reconciliation pass.

        Returns:
            Summary with ``checked``, ``matches``, ``mismatches``,
            ``errors``, the mismatching ``results`` and ``error_details``
        """
        if self._session is not None:
            return await self._run(self._session)

        async with AsyncSessionLocal() as session:
            return await self._run(session)

    async def _run(self, session: AsyncSession) -> Dict[str, Any]:
        correlation_id = new_correlation_id("reconcile")
        dao = SubscriptionDAO(session)
        alerts = AlertService(session)

        subscriptions = [
            {
                "subscription_id": sub.id,
                "organization_id": sub.organization_id,
                "provider_subscription_id": sub.provider_subscription_id,
                "database_quantity": sub.current_seats,
            }
            for sub in await dao.get_reconcilable()
        ]
        logger.info(f"[{correlation_id}] Reconciling {len(subscriptions)} subscriptions")

        matches = 0
        mismatches: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        if subscriptions:
            client = self._get_client()

        for index, row in enumerate(subscriptions):
            if index > 0 and self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)

            try:
                provider_subscription = await client.get_subscription(row["provider_subscription_id"])
            except AppException as e:
                errors.append({**row, "error": e.message})
                logger.warning(
                    f"[{correlation_id}] Could not fetch subscription "
                    f"{row['provider_subscription_id']}: {e.message}"
                )
                await alerts.send_warning(
                    f"Failed to reconcile subscription {row['provider_subscription_id']}",
                    {**row, "error": e.message},
                    job=JOB_NAME,
                    correlation_id=correlation_id,
                )
                continue

            provider_quantity = provider_subscription.quantity
            if provider_quantity == row["database_quantity"]:
                matches += 1
                logger.info(
                    f"[{correlation_id}] Subscription {row['provider_subscription_id']} in sync "
                    f"({provider_quantity} seats)"
                )
                continue

            difference = abs((provider_quantity or 0) - row["database_quantity"])
            mismatch = {
                **row,
                "provider_quantity": provider_quantity,
                "difference": difference,
                "status": "mismatch",
                "details": (
                    f"Database shows {row['database_quantity']} seats, "
                    f"provider shows {provider_quantity} seats"
                ),
            }
            mismatches.append(mismatch)
            logger.error(f"[{correlation_id}] Seat drift: {mismatch['details']}")
            await alerts.send_critical(
                f"Subscription {row['provider_subscription_id']} out of sync! "
                f"Provider: {provider_quantity}, DB: {row['database_quantity']}",
                {**mismatch, "detected_at": datetime.utcnow().isoformat()},
                job=JOB_NAME,
                correlation_id=correlation_id,
            )

        if subscriptions and not mismatches and not errors:
            await alerts.send_info(
                f"Daily reconciliation complete: All {len(subscriptions)} subscriptions in sync",
                {"checked": len(subscriptions), "matches": matches},
                job=JOB_NAME,
                correlation_id=correlation_id,
            )

        await session.commit()

        logger.info(
            f"[{correlation_id}] Reconciliation finished: {matches} matches, "
            f"{len(mismatches)} mismatches, {len(errors)} errors"
        )
        return {
            "success": True,
            "message": "Subscription reconciliation complete",
            "timestamp": datetime.utcnow().isoformat(),
            "correlation_id": correlation_id,
            "checked": len(subscriptions),
            "matches": matches,
            "mismatches": len(mismatches),
            "errors": len(errors),
            "results": mismatches,
            "error_details": errors,
        }
