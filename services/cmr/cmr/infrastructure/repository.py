"""SQLAlchemy implementation of the record store.

Matches schema: cmr_records, cmr_exception_records, delivery_log
"""

from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from cmr.domain.errors import DuplicateShipment, ShipmentNotFound, VersionConflict
from cmr.domain.events import OperationLogEntry
from cmr.domain.models import CmrExceptionRecord, CmrRecord, DeliveryLog
from cmr.domain.record import (
    ExceptionRecord,
    ExceptionState,
    Milestone,
    ShipmentDeliveryRecord,
    ensure_utc,
    utcnow,
)
from cmr.domain.states import (
    CATEGORY_STATUSES,
    DeliveryStatus,
    ExceptionAction,
    ExceptionStatus,
    ListCategory,
    MILESTONE_COUNT,
    MilestoneSlot,
)
from shared.core import get_logger

logger = get_logger(__name__)


def _column_prefix(slot: MilestoneSlot) -> str:
    return slot.name.lower()


def _to_record(row: CmrRecord) -> ShipmentDeliveryRecord:
    milestones = tuple(
        Milestone(
            slot,
            ensure_utc(getattr(row, f"{_column_prefix(slot)}_at")),
            getattr(row, f"{_column_prefix(slot)}_note"),
        )
        for slot in MilestoneSlot
    )
    exception = None
    if row.exception_status is not None:
        exception = ExceptionState(
            status=ExceptionStatus(row.exception_status),
            note=row.exception_note or "",
            reported_at=ensure_utc(row.exception_reported_at),
            records=tuple(
                ExceptionRecord(
                    seq=r.seq,
                    action=ExceptionAction(r.action),
                    note=r.note,
                    actor=r.actor,
                    timestamp=ensure_utc(r.recorded_at),
                    step=r.step,
                )
                for r in sorted(row.exception_records, key=lambda r: r.seq)
            ),
        )
    return ShipmentDeliveryRecord(
        id=row.id,
        delivery_status=DeliveryStatus(row.delivery_status),
        milestones=milestones,
        service_provider=row.service_provider,
        delivery_address=row.delivery_address,
        exception=exception,
        completed=bool(row.completed),
        completed_at=ensure_utc(row.completed_at),
        bill_number=row.bill_number,
        container_number=row.container_number,
        remark=row.remark,
        version=row.version,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _row_values(record: ShipmentDeliveryRecord) -> Dict[str, object]:
    values: Dict[str, object] = {
        "delivery_status": record.delivery_status.value,
        "current_step": record.current_step,
        "service_provider": record.service_provider,
        "delivery_address": record.delivery_address,
        "completed": record.completed,
        "completed_at": record.completed_at,
        "bill_number": record.bill_number,
        "container_number": record.container_number,
        "remark": record.remark,
        "exception_status": record.exception.status.value if record.exception else None,
        "exception_note": record.exception.note if record.exception else None,
        "exception_reported_at": record.exception.reported_at if record.exception else None,
    }
    for milestone in record.milestones:
        prefix = _column_prefix(milestone.slot)
        values[f"{prefix}_at"] = milestone.timestamp
        values[f"{prefix}_note"] = milestone.note
    return values


class SqlAlchemyRecordStore:
    def __init__(self, db: Session):
        self.db = db

    def _select(self):
        return select(CmrRecord).options(selectinload(CmrRecord.exception_records))

    def load_record(self, shipment_id: str) -> ShipmentDeliveryRecord:
        row = self.db.execute(
            self._select()
            .where(CmrRecord.id == shipment_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise ShipmentNotFound(shipment_id)
        return _to_record(row)

    def add_record(self, record: ShipmentDeliveryRecord) -> ShipmentDeliveryRecord:
        if self.db.get(CmrRecord, record.id) is not None:
            raise DuplicateShipment(record.id)
        now = utcnow()
        row = CmrRecord(id=record.id, version=1, created_at=now, updated_at=now, **_row_values(record))
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateShipment(record.id)
        return replace(record, version=1, created_at=now, updated_at=now)

    def save_record(
        self,
        record: ShipmentDeliveryRecord,
        expected_version: int,
        log_entry: Optional[OperationLogEntry] = None,
    ) -> ShipmentDeliveryRecord:
        """Write ``record`` if the stored version still equals ``expected_version``.

        Exception trail entries the store has not seen yet are inserted; stored
        entries are never updated. Record, trail and log entry commit together.
        """
        now = utcnow()
        new_version = expected_version + 1
        try:
            result = self.db.execute(
                update(CmrRecord)
                .where(CmrRecord.id == record.id, CmrRecord.version == expected_version)
                .values(version=new_version, updated_at=now, **_row_values(record))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning(
                    f"Stale write rejected for {record.id}",
                    extra={'extra_fields': {'expected_version': expected_version}},
                )
                raise VersionConflict(record.id, expected_version)

            if record.exception is not None:
                stored = self.db.scalar(
                    select(func.count())
                    .select_from(CmrExceptionRecord)
                    .where(CmrExceptionRecord.shipment_id == record.id)
                )
                for entry in record.exception.records[stored:]:
                    self.db.add(CmrExceptionRecord(
                        shipment_id=record.id,
                        seq=entry.seq,
                        action=entry.action.value,
                        note=entry.note,
                        actor=entry.actor,
                        step=entry.step,
                        recorded_at=entry.timestamp,
                    ))

            if log_entry is not None:
                self.db.add(DeliveryLog(
                    shipment_id=log_entry.shipment_id,
                    operation=log_entry.operation,
                    from_status=log_entry.from_status.value,
                    to_status=log_entry.to_status.value,
                    actor=log_entry.actor,
                    remark=log_entry.remark,
                    occurred_at=log_entry.occurred_at,
                ))
            self.db.commit()
        except IntegrityError:
            # a concurrent writer appended the same trail position first
            self.db.rollback()
            raise VersionConflict(record.id, expected_version)
        except Exception:
            self.db.rollback()
            raise
        return replace(record, version=new_version, updated_at=now)

    def list_records(
        self, statuses: Sequence[DeliveryStatus], limit: int, offset: int
    ) -> Tuple[List[ShipmentDeliveryRecord], int]:
        wanted = [s.value for s in statuses]
        total = self.db.scalar(
            select(func.count()).select_from(CmrRecord).where(CmrRecord.delivery_status.in_(wanted))
        )
        rows = self.db.execute(
            self._select()
            .where(CmrRecord.delivery_status.in_(wanted))
            .order_by(CmrRecord.updated_at.desc(), CmrRecord.id)
            .limit(limit)
            .offset(offset)
        ).scalars().all()
        return [_to_record(row) for row in rows], int(total or 0)

    def stats(self) -> Dict[str, object]:
        by_status = dict(
            self.db.execute(
                select(CmrRecord.delivery_status, func.count()).group_by(CmrRecord.delivery_status)
            ).all()
        )
        by_step = dict(
            self.db.execute(
                select(CmrRecord.current_step, func.count()).group_by(CmrRecord.current_step)
            ).all()
        )
        completed = self.db.scalar(
            select(func.count()).select_from(CmrRecord).where(CmrRecord.completed.is_(True))
        )
        categories = {
            category.value: sum(by_status.get(status.value, 0) for status in statuses)
            for category, statuses in CATEGORY_STATUSES.items()
            if category != ListCategory.ALL
        }
        return {
            "categories": categories,
            "step_distribution": {str(step): int(by_step.get(step, 0)) for step in range(MILESTONE_COUNT + 1)},
            "completed": int(completed or 0),
        }

    def operation_log(self, shipment_id: str) -> List[OperationLogEntry]:
        rows = self.db.execute(
            select(DeliveryLog).where(DeliveryLog.shipment_id == shipment_id).order_by(DeliveryLog.id)
        ).scalars().all()
        return [
            OperationLogEntry(
                id=row.id,
                shipment_id=row.shipment_id,
                operation=row.operation,
                from_status=DeliveryStatus(row.from_status),
                to_status=DeliveryStatus(row.to_status),
                actor=row.actor,
                remark=row.remark,
                occurred_at=ensure_utc(row.occurred_at),
            )
            for row in rows
        ]
