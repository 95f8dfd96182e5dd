from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from cmr.infrastructure.db import get_db
from cmr.infrastructure.notifications import get_publisher
from cmr.infrastructure.repository import SqlAlchemyRecordStore
from cmr.application.service import DeliveryService
from cmr.application.schemas import (
    CompleteRequest,
    DeliveryPage,
    DeliverySnapshot,
    DeliveryStats,
    ErrorRead,
    ExceptionActionRequest,
    ExceptionRecordRead,
    MilestoneUpdate,
    OperationLogRead,
    ShipmentCreate,
    SnapshotBatchRead,
    SnapshotBatchRequest,
    SnapshotResult,
)
from cmr.auth_local import resolve_actor, token_actor
from cmr.core_settings import get_settings
from cmr.domain.states import ListCategory

router = APIRouter(prefix="/cmr", tags=["cmr"])

def get_service(db: Session = Depends(get_db), publisher=Depends(get_publisher)) -> DeliveryService:
    return DeliveryService(
        SqlAlchemyRecordStore(db),
        publisher,
        default_actor=get_settings().DEFAULT_ACTOR,
    )

@router.post("/", response_model=DeliverySnapshot, status_code=201)
def register_shipment(payload: ShipmentCreate, service: DeliveryService = Depends(get_service)):
    record = service.register(payload.id, payload.bill_number, payload.container_number, payload.remark)
    return DeliverySnapshot.from_record(record)

@router.get("/", response_model=DeliveryPage)
def list_shipments(
    category: ListCategory = ListCategory.ALL,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: DeliveryService = Depends(get_service),
):
    records, total = service.list(category, limit, offset)
    return DeliveryPage(
        category=category,
        items=[DeliverySnapshot.from_record(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )

@router.get("/stats", response_model=DeliveryStats)
def delivery_stats(service: DeliveryService = Depends(get_service)):
    return DeliveryStats(**service.stats())

@router.post("/snapshots", response_model=SnapshotBatchRead)
def refresh_snapshots(payload: SnapshotBatchRequest, service: DeliveryService = Depends(get_service)):
    results = []
    for shipment_id, record, error in service.get_snapshots(payload.ids):
        if error is not None:
            results.append(SnapshotResult(id=shipment_id, ok=False, error=ErrorRead(**error.to_dict())))
        else:
            results.append(SnapshotResult(id=shipment_id, ok=True, snapshot=DeliverySnapshot.from_record(record)))
    succeeded = sum(1 for r in results if r.ok)
    return SnapshotBatchRead(results=results, succeeded=succeeded, failed=len(results) - succeeded)

@router.get("/{shipment_id}", response_model=DeliverySnapshot)
def get_delivery_snapshot(shipment_id: str, service: DeliveryService = Depends(get_service)):
    return DeliverySnapshot.from_record(service.get_snapshot(shipment_id))

@router.post("/{shipment_id}/milestones", response_model=DeliverySnapshot)
def record_milestone(
    shipment_id: str,
    payload: MilestoneUpdate,
    service: DeliveryService = Depends(get_service),
    subject: Optional[str] = Depends(token_actor),
):
    record = service.record_milestone(
        shipment_id,
        payload.slot,
        payload.timestamp,
        note=payload.note,
        service_provider=payload.service_provider,
        delivery_address=payload.delivery_address,
        actor=resolve_actor(subject, payload.actor),
        remark=payload.remark,
    )
    return DeliverySnapshot.from_record(record)

@router.post("/{shipment_id}/exception", response_model=DeliverySnapshot)
def apply_exception_action(
    shipment_id: str,
    payload: ExceptionActionRequest,
    service: DeliveryService = Depends(get_service),
    subject: Optional[str] = Depends(token_actor),
):
    record = service.apply_exception_action(
        shipment_id,
        payload.action,
        note=payload.note,
        actor=resolve_actor(subject, payload.actor),
    )
    return DeliverySnapshot.from_record(record)

@router.get("/{shipment_id}/exception/records", response_model=list[ExceptionRecordRead])
def exception_records(shipment_id: str, service: DeliveryService = Depends(get_service)):
    return [ExceptionRecordRead.model_validate(r) for r in service.exception_history(shipment_id)]

@router.post("/{shipment_id}/complete", response_model=DeliverySnapshot)
def mark_completed(
    shipment_id: str,
    payload: Optional[CompleteRequest] = None,
    service: DeliveryService = Depends(get_service),
    subject: Optional[str] = Depends(token_actor),
):
    payload = payload or CompleteRequest()
    record = service.mark_completed(
        shipment_id,
        actor=resolve_actor(subject, payload.actor),
        remark=payload.remark,
    )
    return DeliverySnapshot.from_record(record)

@router.get("/{shipment_id}/log", response_model=list[OperationLogRead])
def operation_log(shipment_id: str, service: DeliveryService = Depends(get_service)):
    return [OperationLogRead.model_validate(entry) for entry in service.operation_log(shipment_id)]
