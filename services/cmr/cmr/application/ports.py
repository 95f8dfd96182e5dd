from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from cmr.domain.events import DeliveryStatusChanged, OperationLogEntry
from cmr.domain.record import ShipmentDeliveryRecord
from cmr.domain.states import DeliveryStatus


class RecordStore(Protocol):
    """Persistence collaborator for shipment delivery records."""

    def load_record(self, shipment_id: str) -> ShipmentDeliveryRecord: ...

    def add_record(self, record: ShipmentDeliveryRecord) -> ShipmentDeliveryRecord: ...

    def save_record(
        self,
        record: ShipmentDeliveryRecord,
        expected_version: int,
        log_entry: Optional[OperationLogEntry] = None,
    ) -> ShipmentDeliveryRecord: ...

    def list_records(
        self, statuses: Sequence[DeliveryStatus], limit: int, offset: int
    ) -> Tuple[List[ShipmentDeliveryRecord], int]: ...

    def stats(self) -> Dict[str, object]: ...

    def operation_log(self, shipment_id: str) -> List[OperationLogEntry]: ...


class EventPublisher(Protocol):
    """Notification collaborator. Must never raise into the workflow."""

    def publish(self, event: DeliveryStatusChanged) -> None: ...
