"""Pydantic request/response schemas."""

from servicehub.schemas.catalog import CategoryRead, SubCategoryRead
from servicehub.schemas.service_request import ServiceRequestCreate, ServiceRequestRead, CancelRequest
from servicehub.schemas.proposal import (
    ProposalCreate, ProposalAccept, ProposalReject, LeadAccept, LeadReject,
)
from servicehub.schemas.review import ReviewCreate, ReviewRead
from servicehub.schemas.work_order import WorkOrderRead

__all__ = [
    "CategoryRead", "SubCategoryRead",
    "ServiceRequestCreate", "ServiceRequestRead", "CancelRequest",
    "ProposalCreate", "ProposalAccept", "ProposalReject", "LeadAccept", "LeadReject",
    "ReviewCreate", "ReviewRead",
    "WorkOrderRead",
]
