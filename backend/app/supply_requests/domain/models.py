import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Sequence


class SupplyRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ORDERED = "ordered"
    PARTIALLY_DELIVERED = "partially_delivered"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class SupplyRequestPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AuditSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AuditAction(str, enum.Enum):
    CREATED = "supply_request_created"
    UPDATED = "supply_request_updated"
    APPROVED = "supply_request_approved"
    REJECTED = "supply_request_rejected"
    ORDERED = "supply_request_ordered"
    DELIVERED = "supply_request_delivered"
    CANCELLED = "supply_request_cancelled"
    DELETED = "supply_request_deleted"


@dataclass(frozen=True)
class UserSummary:
    id: str
    name: str
    email: str = ""


@dataclass(frozen=True)
class BusinessSummary:
    id: str
    name: str
    admin_user_id: Optional[str] = None


@dataclass(frozen=True)
class ProjectSummary:
    id: str
    name: str
    business_id: str
    assigned_user_ids: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class ProjectAccess:
    project: ProjectSummary
    business: BusinessSummary
    actor: UserSummary
    is_assigned: bool
    is_business_admin: bool

    @property
    def is_member(self) -> bool:
        return self.is_assigned or self.is_business_admin


@dataclass(frozen=True)
class EquipmentSummary:
    id: str
    business_id: str
    name: str
    category: str
    unit_of_measure: str
    default_unit_cost: Optional[float] = None


@dataclass(frozen=True)
class RequestedEquipmentItem:
    equipment_id: str
    equipment_name: str
    equipment_category: str
    unit_of_measure: str
    quantity_requested: float
    estimated_unit_cost: float
    estimated_total_cost: float
    quantity_approved: float = 0.0
    quantity_delivered: float = 0.0
    notes: Optional[str] = None


@dataclass(frozen=True)
class SupplyRequest:
    id: str
    business_id: str
    project_id: str
    requested_by: str
    description: str
    requested_date: datetime
    required_date: datetime
    priority: SupplyRequestPriority
    status: SupplyRequestStatus
    items: Sequence[RequestedEquipmentItem]
    total_estimated_cost: float
    created_at: datetime
    updated_at: datetime
    name: Optional[str] = None
    total_approved_cost: Optional[float] = None
    actual_cost: Optional[float] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    ordered_at: Optional[datetime] = None
    expected_delivery_date: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    delivery_notes: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_contact: Optional[str] = None
    purchase_order_number: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    version: int = 1


@dataclass(frozen=True)
class AuditEvent:
    id: str
    actor_id: str
    action: AuditAction
    resource_id: str
    severity: AuditSeverity
    success: bool
    business_id: str
    project_id: str
    description: str
    timestamp: datetime
    resource_name: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestFilters:
    project_id: str
    now: datetime
    status: Optional[SupplyRequestStatus] = None
    priority: Optional[SupplyRequestPriority] = None
    requested_by: Optional[str] = None
    overdue_only: bool = False
    limit: int = 20
    offset: int = 0


@dataclass(frozen=True)
class RequestSummary:
    total_requests: int
    requests_by_status: Dict[str, int]
    overdue_requests: int
    total_estimated_cost: float
    total_approved_cost: float
    total_actual_cost: float
    last_request_at: Optional[datetime] = None


@dataclass(frozen=True)
class EquipmentUsage:
    equipment_id: str
    equipment_name: str
    total_requested: float
    total_delivered: float


@dataclass(frozen=True)
class SupplyRequestStats:
    summary: RequestSummary
    requests_by_priority: Dict[str, int]
    top_requested_equipment: Sequence[EquipmentUsage]
    average_approval_days: float
    average_delivery_days: float

    @property
    def cost_savings(self) -> float:
        return self.summary.total_estimated_cost - self.summary.total_actual_cost
