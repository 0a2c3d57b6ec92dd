from enum import Enum


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    LATE = "late"
    ABSENT = "absent"


class AbsenceReason(str, Enum):
    SICK = "sick"
    FAMILY = "family"
    SCHOOL_EVENT = "school_event"
    UNEXCUSED = "unexcused"
    OTHER = "other"


# Reasons for which the parent is notified by default when a student is marked absent.
AUTO_NOTIFY_REASONS = frozenset({AbsenceReason.UNEXCUSED})


class OperationMode(str, Enum):
    """How a tenant staffs a class: one homeroom teacher, or several teachers splitting the feed."""

    HOMEROOM = "homeroom"
    TEAM = "team"


class SessionType(str, Enum):
    REGULAR = "regular"
    MAKEUP = "makeup"


class CardStatus(str, Enum):
    EMPTY = "empty"
    DIRTY = "dirty"
    ERROR = "error"
    SAVED = "saved"


class TicketStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


OPEN_TICKET_STATUSES = (TicketStatus.PENDING, TicketStatus.SCHEDULED)


class TicketAction(str, Enum):
    SCHEDULE = "schedule"
    COMPLETE = "complete"
    CANCEL = "cancel"
    REOPEN = "reopen"


# Allowed source states and target state per staff action. Creation happens only on an absent feed save.
TICKET_TRANSITIONS = {
    TicketAction.SCHEDULE: (frozenset({TicketStatus.PENDING, TicketStatus.SCHEDULED}), TicketStatus.SCHEDULED),
    TicketAction.COMPLETE: (frozenset({TicketStatus.PENDING, TicketStatus.SCHEDULED}), TicketStatus.COMPLETED),
    TicketAction.CANCEL: (frozenset({TicketStatus.PENDING, TicketStatus.SCHEDULED}), TicketStatus.CANCELLED),
    TicketAction.REOPEN: (frozenset({TicketStatus.COMPLETED}), TicketStatus.PENDING),
}
