from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .states import DeliveryStatus


@dataclass(frozen=True)
class DeliveryStatusChanged:
    """Emitted whenever a shipment enters or leaves Exception."""
    shipment_id: str
    from_status: DeliveryStatus
    to_status: DeliveryStatus
    timestamp: datetime

    event_type = "cmr.delivery_status_changed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.event_type,
            "shipment_id": self.shipment_id,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class OperationLogEntry:
    """One row of the per-shipment operation log."""
    shipment_id: str
    operation: str
    from_status: DeliveryStatus
    to_status: DeliveryStatus
    actor: str
    occurred_at: datetime
    remark: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
