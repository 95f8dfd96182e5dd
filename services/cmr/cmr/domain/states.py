"""Closed vocabularies of the CMR delivery workflow."""

from enum import Enum


class DeliveryStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    IN_TRANSIT = "InTransit"
    DELIVERED = "Delivered"
    EXCEPTION = "Exception"
    EXCEPTION_CLOSED = "ExceptionClosed"


class MilestoneSlot(int, Enum):
    """The five physical milestones, numbered in the order they must be filled."""
    PICKUP = 1
    TRANSIT_ARRIVAL = 2
    ACTUAL_ARRIVAL = 3
    UNLOADING_COMPLETE = 4
    CONFIRMED = 5


MILESTONE_COUNT = len(MilestoneSlot)


class ExceptionStatus(str, Enum):
    REPORTED = "Reported"
    FOLLOWING = "Following"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


# An exception in one of these states holds the shipment in Exception
LIVE_EXCEPTION_STATUSES = frozenset({ExceptionStatus.REPORTED, ExceptionStatus.FOLLOWING})


class ExceptionAction(str, Enum):
    REPORT = "Report"
    FOLLOWUP = "Followup"
    RESOLVE = "Resolve"
    CONTINUE = "Continue"
    CLOSE = "Close"


class ListCategory(str, Enum):
    """Work-queue buckets shown by the CMR management pages."""
    PENDING = "pending"
    DELIVERING = "delivering"
    EXCEPTION = "exception"
    ARCHIVED = "archived"
    ALL = "all"


CATEGORY_STATUSES = {
    ListCategory.PENDING: (DeliveryStatus.NOT_STARTED,),
    ListCategory.DELIVERING: (DeliveryStatus.IN_TRANSIT,),
    ListCategory.EXCEPTION: (DeliveryStatus.EXCEPTION, DeliveryStatus.EXCEPTION_CLOSED),
    ListCategory.ARCHIVED: (DeliveryStatus.DELIVERED,),
    ListCategory.ALL: tuple(DeliveryStatus),
}
