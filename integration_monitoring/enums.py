"""Shared identifiers used across the monitoring pipeline."""

from enum import Enum


class Provider(str, Enum):
    """Monitored third-party integrations."""
    MIKROTIK = "MIKROTIK"
    WHATSAPP = "WHATSAPP"
    EMAIL = "EMAIL"
    CLERK = "CLERK"
    OTHER = "OTHER"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def coerce(cls, value: "str | Provider") -> "Provider":
        """Map a producer-supplied tag to a provider, falling back to OTHER."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.OTHER


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertCategory(str, Enum):
    SYSTEM_HEALTH = "SYSTEM_HEALTH"
    SECURITY = "SECURITY"
    PERFORMANCE = "PERFORMANCE"
    CONNECTIVITY = "CONNECTIVITY"
    USER_MANAGEMENT = "USER_MANAGEMENT"


class ReportType(str, Enum):
    """Operational report cycles fired during the day."""
    MORNING = "MORNING"
    MIDDAY = "MIDDAY"
    EVENING = "EVENING"


class IssueType(str, Enum):
    CONNECTION_ERROR = "CONNECTION_ERROR"
    CONFIGURATION_CONFLICT = "CONFIGURATION_CONFLICT"
    API_ERROR = "API_ERROR"
