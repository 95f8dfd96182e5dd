"""Typed failures of the delivery workflow.

Every rejection carries a stable ``code`` for API clients and the HTTP status
the API layer answers with. Only ``VersionConflict`` is retryable.
"""

from typing import Optional


class DeliveryError(Exception):
    code = "delivery_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, shipment_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.shipment_id = shipment_id

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "detail": self.message,
            "retryable": self.retryable,
            "shipment_id": self.shipment_id,
        }


class ShipmentNotFound(DeliveryError):
    code = "shipment_not_found"
    status_code = 404

    def __init__(self, shipment_id: str):
        super().__init__(f"Shipment {shipment_id} not found", shipment_id)


class DuplicateShipment(DeliveryError):
    code = "duplicate_shipment"
    status_code = 409

    def __init__(self, shipment_id: str):
        super().__init__(f"Shipment {shipment_id} is already registered", shipment_id)


class OutOfOrderMilestone(DeliveryError):
    code = "out_of_order_milestone"
    status_code = 409

    def __init__(self, slot: int, current_step: int, shipment_id: Optional[str] = None):
        super().__init__(
            f"Milestone {slot} cannot be recorded at step {current_step}; "
            f"next expected milestone is {current_step + 1}",
            shipment_id,
        )
        self.slot = slot
        self.current_step = current_step


class IllegalTransition(DeliveryError):
    code = "illegal_transition"
    status_code = 409


class MissingRequiredField(IllegalTransition):
    code = "missing_required_field"
    status_code = 422

    def __init__(self, field: str, shipment_id: Optional[str] = None):
        super().__init__(f"{field} is required", shipment_id)
        self.field = field


class RecordLocked(DeliveryError):
    code = "record_locked"
    status_code = 423


class NotDeliverable(DeliveryError):
    code = "not_deliverable"
    status_code = 409


class AlreadyCompleted(DeliveryError):
    code = "already_completed"
    status_code = 409


class VersionConflict(DeliveryError):
    code = "version_conflict"
    status_code = 409
    retryable = True

    def __init__(self, shipment_id: str, expected_version: int):
        super().__init__(
            f"Shipment {shipment_id} changed since version {expected_version}; reload and resubmit",
            shipment_id,
        )
        self.expected_version = expected_version
