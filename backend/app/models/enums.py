"""SQLAlchemy ENUM types for the database schema."""

import enum


class Frequency(str, enum.Enum):
    """Recurrence of a subactivity as stored in the activity catalog."""

    NONE = "None"
    ONE_TIME = "OneTime"
    HOURLY = "Hourly"
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    YEARLY = "Yearly"

    @property
    def is_recurring(self) -> bool:
        return self not in (Frequency.NONE, Frequency.ONE_TIME)


class TimelineStatus(str, enum.Enum):
    """Workflow status of a timeline instance (mutated downstream)."""

    PENDING = "pending"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    DELAYED = "delayed"


class TimelineType(str, enum.Enum):
    """Whether an instance belongs to a recurring series."""

    ONE_TIME = "oneTime"
    RECURRING = "recurring"


class ClientStatus(str, enum.Enum):
    """Lifecycle status of a client."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class AssignmentStatus(str, enum.Enum):
    """Status of an activity assigned to a client."""

    ACTIVE = "active"
    INACTIVE = "inactive"
