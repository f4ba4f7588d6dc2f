"""
Cron API endpoints.

WHAT: HTTP triggers for the two billing jobs:
1. /cron/apply-pending-subscription-changes - push pending seats before renewal
2. /cron/reconcile-subscriptions - daily drift audit

WHY: Hosted cron runners call URLs, some with GET and some with POST, so
both methods are accepted. Each call requires ``Authorization: Bearer
<CRON_SECRET>``. The provider client is built before the job starts so a
missing API key fails fast with 503 instead of alerting per subscription.
"""

import logging
from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from seatsync.core.deps import get_provider_client_factory, verify_cron_secret
from seatsync.db.session import get_db
from seatsync.schemas.cron import PendingChangesRunResponse, ReconciliationRunResponse
from seatsync.services.lemonsqueezy_client import LemonSqueezyClient
from seatsync.services.pending_changes_job import PendingChangesJob
from seatsync.services.reconciliation_job import ReconciliationJob

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/cron",
    tags=["Cron"],
    dependencies=[Depends(verify_cron_secret)],
)


@router.api_route(
    "/apply-pending-subscription-changes",
    methods=["GET", "POST"],
    response_model=PendingChangesRunResponse,
    summary="Apply pending subscription changes",
)
async def apply_pending_subscription_changes(
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[], LemonSqueezyClient] = Depends(get_provider_client_factory),
):
    client = client_factory()
    logger.info("Cron: applying pending subscription changes")
    return await PendingChangesJob(session=db, client=client).run()


@router.api_route(
    "/reconcile-subscriptions",
    methods=["GET", "POST"],
    response_model=ReconciliationRunResponse,
    summary="Reconcile subscriptions with the billing provider",
)
async def reconcile_subscriptions(
    db: AsyncSession = Depends(get_db),
    client_factory: Callable[[], LemonSqueezyClient] = Depends(get_provider_client_factory),
):
    client = client_factory()
    logger.info("Cron: reconciling subscriptions")
    return await ReconciliationJob(session=db, client=client).run()
