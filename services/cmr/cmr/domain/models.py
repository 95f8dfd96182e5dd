from typing import Optional
from datetime import datetime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func

# audit and log rows store the actor verbatim
ACTOR_MAX_LENGTH = 100

class Base(DeclarativeBase):
    pass

class CmrRecord(Base):
    __tablename__ = "cmr_records"
    # Shipment id is assigned upstream (bill of lading / container), not by this service
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    bill_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    container_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    delivery_status: Mapped[str] = mapped_column(String(20), index=True)
    current_step: Mapped[int] = mapped_column(Integer, default=0)
    service_provider: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    delivery_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    remark: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    pickup_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    pickup_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transit_arrival_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    transit_arrival_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actual_arrival_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_arrival_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unloading_complete_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    unloading_complete_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Header of the exception track; the trail itself lives in cmr_exception_records
    exception_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    exception_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    exception_reported_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    exception_records: Mapped[list["CmrExceptionRecord"]] = relationship(
        "CmrExceptionRecord", back_populates="shipment", order_by="CmrExceptionRecord.seq"
    )

class CmrExceptionRecord(Base):
    __tablename__ = "cmr_exception_records"
    __table_args__ = (UniqueConstraint("shipment_id", "seq", name="uq_cmr_exception_records_seq"),)
    id: Mapped[int] = mapped_column(primary_key=True)
    shipment_id: Mapped[str] = mapped_column(ForeignKey("cmr_records.id"), index=True)
    seq: Mapped[int] = mapped_column(Integer)
    action: Mapped[str] = mapped_column(String(20))
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor: Mapped[str] = mapped_column(String(ACTOR_MAX_LENGTH))
    step: Mapped[int] = mapped_column(Integer, default=0)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    shipment: Mapped[CmrRecord] = relationship("CmrRecord", back_populates="exception_records")

class DeliveryLog(Base):
    __tablename__ = "delivery_log"
    id: Mapped[int] = mapped_column(primary_key=True)
    shipment_id: Mapped[str] = mapped_column(String(64), index=True)
    operation: Mapped[str] = mapped_column(String(40))
    from_status: Mapped[str] = mapped_column(String(20))
    to_status: Mapped[str] = mapped_column(String(20))
    actor: Mapped[str] = mapped_column(String(ACTOR_MAX_LENGTH))
    remark: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
