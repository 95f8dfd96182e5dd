from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from cmr.domain.ledger import next_slot
from cmr.domain.models import ACTOR_MAX_LENGTH
from cmr.domain.record import ShipmentDeliveryRecord
from cmr.domain.states import DeliveryStatus, ExceptionAction, ExceptionStatus, ListCategory

class ShipmentCreate(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    bill_number: Optional[str] = Field(None, max_length=64)
    container_number: Optional[str] = Field(None, max_length=32)
    remark: Optional[str] = None

class MilestoneUpdate(BaseModel):
    slot: int
    timestamp: Optional[datetime] = None
    note: Optional[str] = None
    # Descriptive fields, normally supplied with Pickup
    service_provider: Optional[str] = Field(None, max_length=200)
    delivery_address: Optional[str] = Field(None, max_length=500)
    remark: Optional[str] = None
    actor: Optional[str] = Field(None, max_length=ACTOR_MAX_LENGTH)

class ExceptionActionRequest(BaseModel):
    action: ExceptionAction
    note: Optional[str] = None
    actor: Optional[str] = Field(None, max_length=ACTOR_MAX_LENGTH)

class CompleteRequest(BaseModel):
    remark: Optional[str] = None
    actor: Optional[str] = Field(None, max_length=ACTOR_MAX_LENGTH)

class SnapshotBatchRequest(BaseModel):
    ids: list[str] = Field(..., min_length=1, max_length=200)

class MilestoneRead(BaseModel):
    slot: int
    name: str
    timestamp: Optional[datetime] = None
    note: Optional[str] = None
    class Config:
        from_attributes = True

class ExceptionRecordRead(BaseModel):
    seq: int
    action: ExceptionAction
    note: Optional[str] = None
    actor: str
    timestamp: datetime
    step: int
    class Config:
        from_attributes = True

class ExceptionRead(BaseModel):
    status: ExceptionStatus
    note: str
    reported_at: datetime
    records: list[ExceptionRecordRead]
    class Config:
        from_attributes = True

class DeliverySnapshot(BaseModel):
    id: str
    bill_number: Optional[str] = None
    container_number: Optional[str] = None
    delivery_status: DeliveryStatus
    current_step: int
    next_milestone: Optional[str] = None
    milestones: list[MilestoneRead]
    service_provider: Optional[str] = None
    delivery_address: Optional[str] = None
    remark: Optional[str] = None
    exception: Optional[ExceptionRead] = None
    completed: bool
    completed_at: Optional[datetime] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ShipmentDeliveryRecord) -> "DeliverySnapshot":
        upcoming = next_slot(record)
        return cls(
            id=record.id,
            bill_number=record.bill_number,
            container_number=record.container_number,
            delivery_status=record.delivery_status,
            current_step=record.current_step,
            next_milestone=upcoming.name if upcoming is not None and not record.is_frozen else None,
            milestones=[MilestoneRead.model_validate(m) for m in record.milestones],
            service_provider=record.service_provider,
            delivery_address=record.delivery_address,
            remark=record.remark,
            exception=ExceptionRead.model_validate(record.exception) if record.exception else None,
            completed=record.completed,
            completed_at=record.completed_at,
            version=record.version,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

class DeliveryPage(BaseModel):
    category: ListCategory
    items: list[DeliverySnapshot]
    total: int
    limit: int
    offset: int

class DeliveryStats(BaseModel):
    # keyed by ListCategory value, "all" excluded
    categories: dict[str, int]
    # keyed by current_step, "0".."5"
    step_distribution: dict[str, int]
    completed: int

class ErrorRead(BaseModel):
    error: str
    detail: str
    retryable: bool = False
    shipment_id: Optional[str] = None

class SnapshotResult(BaseModel):
    id: str
    ok: bool
    snapshot: Optional[DeliverySnapshot] = None
    error: Optional[ErrorRead] = None

class SnapshotBatchRead(BaseModel):
    results: list[SnapshotResult]
    succeeded: int
    failed: int

class OperationLogRead(BaseModel):
    id: Optional[int] = None
    shipment_id: str
    operation: str
    from_status: DeliveryStatus
    to_status: DeliveryStatus
    actor: str
    remark: Optional[str] = None
    occurred_at: datetime
    class Config:
        from_attributes = True
