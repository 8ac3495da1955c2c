"""SQLAlchemy ORM models."""

from servicehub.models.base import Base
from servicehub.models.user import User, UserSession
from servicehub.models.catalog import Category, SubCategory
from servicehub.models.business import Business, ProviderProfile
from servicehub.models.subscription import SubscriptionPlan, UserSubscription
from servicehub.models.service_request import ServiceRequest, AlternativeProviderSelection
from servicehub.models.lead import Lead
from servicehub.models.proposal import Proposal
from servicehub.models.work_order import WorkOrder
from servicehub.models.review import Review
from servicehub.models.activity_log import ActivityLog

__all__ = [
    "Base", "User", "UserSession",
    "Category", "SubCategory",
    "Business", "ProviderProfile",
    "SubscriptionPlan", "UserSubscription",
    "ServiceRequest", "AlternativeProviderSelection",
    "Lead", "Proposal", "WorkOrder", "Review", "ActivityLog",
]
