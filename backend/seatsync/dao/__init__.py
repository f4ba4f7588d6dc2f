"""Data Access Objects package"""

from seatsync.dao.base import BaseDAO
from seatsync.dao.alert import AlertDAO
from seatsync.dao.billing_event import BillingEventDAO
from seatsync.dao.membership import MembershipDAO, InvitationDAO
from seatsync.dao.organization import OrganizationDAO
from seatsync.dao.subscription import SubscriptionDAO

__all__ = [
    "BaseDAO",
    "AlertDAO",
    "BillingEventDAO",
    "MembershipDAO",
    "InvitationDAO",
    "OrganizationDAO",
    "SubscriptionDAO",
]
