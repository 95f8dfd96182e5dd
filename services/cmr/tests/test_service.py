import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from cmr.application.locking import KeyedLock
from cmr.application.service import DeliveryService, workflow_metrics
from cmr.domain.errors import OutOfOrderMilestone, RecordLocked, ShipmentNotFound
from cmr.domain.models import Base
from cmr.domain.states import DeliveryStatus, ExceptionAction, ExceptionStatus, ListCategory
from cmr.infrastructure.db import build_engine
from cmr.infrastructure.repository import SqlAlchemyRecordStore

T1 = datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)


def deliver(service, shipment_id, upto=5):
    for slot in range(1, upto + 1):
        service.record_milestone(shipment_id, slot, T1 + timedelta(hours=slot))


def test_register_and_record(service):
    service.register("CMR-100", bill_number="BL-1", container_number="MSKU1234565")
    record = service.record_milestone(
        "CMR-100", 1, T1, service_provider="Rhenus Road", actor="dispatcher", remark="gate 3",
    )
    assert record.version == 2
    assert record.delivery_status == DeliveryStatus.IN_TRANSIT
    assert record.service_provider == "Rhenus Road"

    [entry] = service.operation_log("CMR-100")
    assert entry.operation == "milestone:pickup"
    assert (entry.from_status, entry.to_status) == (DeliveryStatus.NOT_STARTED, DeliveryStatus.IN_TRANSIT)
    assert entry.actor == "dispatcher"
    assert entry.remark == "gate 3"


def test_replay_does_not_write(service):
    service.register("CMR-101")
    first = service.record_milestone("CMR-101", 1, T1)
    replays = workflow_metrics.noops
    again = service.record_milestone("CMR-101", 1, T1)
    assert again.version == first.version
    assert len(service.operation_log("CMR-101")) == 1
    assert workflow_metrics.noops == replays + 1


def test_rejection_leaves_record_and_counts(service, publisher):
    service.register("CMR-102")
    deliver(service, "CMR-102", upto=3)
    before = service.get_snapshot("CMR-102")
    rejected = workflow_metrics.rejected["out_of_order_milestone"]

    with pytest.raises(OutOfOrderMilestone):
        service.record_milestone("CMR-102", 5, T1)

    assert service.get_snapshot("CMR-102") == before
    assert workflow_metrics.rejected["out_of_order_milestone"] == rejected + 1
    assert publisher.events == []


def test_events_only_on_exception_boundary(service, publisher):
    service.register("CMR-103")
    deliver(service, "CMR-103", upto=2)
    assert publisher.events == []

    service.apply_exception_action("CMR-103", ExceptionAction.REPORT, note="customs hold", actor="clerk")
    service.apply_exception_action("CMR-103", ExceptionAction.FOLLOWUP, note="broker called")
    record = service.apply_exception_action("CMR-103", ExceptionAction.RESOLVE, note="released")

    assert record.delivery_status == DeliveryStatus.IN_TRANSIT
    assert [(e.from_status, e.to_status) for e in publisher.events] == [
        (DeliveryStatus.IN_TRANSIT, DeliveryStatus.EXCEPTION),
        (DeliveryStatus.EXCEPTION, DeliveryStatus.IN_TRANSIT),
    ]
    assert all(e.shipment_id == "CMR-103" for e in publisher.events)

    history = service.exception_history("CMR-103")
    assert [r.actor for r in history] == ["clerk", "system", "system"]
    assert [e.operation for e in service.operation_log("CMR-103")][-3:] == [
        "exception:report", "exception:followup", "exception:resolve",
    ]


def test_complete_then_locked(service):
    service.register("CMR-104")
    deliver(service, "CMR-104")
    record = service.mark_completed("CMR-104", actor="finance", remark="POD received")
    assert record.completed
    with pytest.raises(RecordLocked):
        service.record_milestone("CMR-104", 5, T1 + timedelta(hours=5))
    assert service.operation_log("CMR-104")[-1].operation == "complete"


def test_unknown_shipment(service):
    with pytest.raises(ShipmentNotFound):
        service.record_milestone("CMR-NOPE", 1, T1)
    with pytest.raises(ShipmentNotFound):
        service.operation_log("CMR-NOPE")


def test_snapshots_partial_failure(service):
    service.register("CMR-105")
    results = service.get_snapshots(["CMR-105", "CMR-MISSING"])
    assert results[0][0] == "CMR-105" and results[0][1].id == "CMR-105" and results[0][2] is None
    assert results[1][1] is None
    assert isinstance(results[1][2], ShipmentNotFound)


def test_list_by_category(service):
    service.register("CMR-106")
    service.register("CMR-107")
    deliver(service, "CMR-107", upto=1)
    service.apply_exception_action("CMR-107", ExceptionAction.REPORT, note="accident")

    records, total = service.list(ListCategory.EXCEPTION)
    assert total == 1 and records[0].id == "CMR-107"
    records, total = service.list(ListCategory.PENDING)
    assert [r.id for r in records] == ["CMR-106"]
    assert service.list(ListCategory.ALL)[1] == 2


def test_concurrent_followups_are_serialised(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'cmr.db'}")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    locks = KeyedLock()

    setup = DeliveryService(SqlAlchemyRecordStore(Session()), locks=locks)
    setup.register("CMR-RACE")
    setup.record_milestone("CMR-RACE", 1, T1)
    setup.apply_exception_action("CMR-RACE", ExceptionAction.REPORT, note="customs hold")
    setup.store.db.close()

    errors = []

    def follow_up(n):
        session = Session()
        try:
            DeliveryService(SqlAlchemyRecordStore(session), locks=locks).apply_exception_action(
                "CMR-RACE", ExceptionAction.FOLLOWUP, note=f"call {n}", actor=f"agent-{n}",
            )
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=follow_up, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    session = Session()
    record = SqlAlchemyRecordStore(session).load_record("CMR-RACE")
    session.close()
    engine.dispose()

    assert errors == []
    assert [r.seq for r in record.exception.records] == list(range(1, 10))
    assert record.exception.status == ExceptionStatus.FOLLOWING
    # register, pickup, report, then one write per follow-up
    assert record.version == 3 + 8
    assert len(locks) == 0


class ExplodingPublisher:
    def publish(self, event):
        raise ConnectionError("broker unreachable")


def test_publish_failure_keeps_committed_write(store, caplog):
    service = DeliveryService(store, ExplodingPublisher(), locks=KeyedLock())
    service.register("CMR-108")
    deliver(service, "CMR-108", upto=1)

    with caplog.at_level(logging.WARNING, logger="cmr.application.service"):
        record = service.apply_exception_action("CMR-108", ExceptionAction.REPORT, note="seal broken")

    assert record.delivery_status == DeliveryStatus.EXCEPTION
    stored = service.get_snapshot("CMR-108")
    assert stored.delivery_status == DeliveryStatus.EXCEPTION
    assert stored.version == 3
    assert service.operation_log("CMR-108")[-1].operation == "exception:report"
    assert any("Notification for CMR-108 failed" in r.getMessage() for r in caplog.records)


def test_applied_log_carries_operation_and_actor(service, caplog):
    service.register("CMR-109")
    with caplog.at_level(logging.INFO, logger="cmr.application.service"):
        service.record_milestone("CMR-109", 1, T1, actor="dispatcher")

    [applied] = [r for r in caplog.records if r.getMessage() == "Applied milestone:pickup"]
    assert applied.extra_fields["operation"] == "milestone:pickup"
    assert applied.extra_fields["actor"] == "dispatcher"
    assert applied.extra_fields["to_status"] == "InTransit"
