"""Configuration management for the monitoring pipeline."""

import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import Provider, ReportType, Severity


class BillingTierConfig(BaseModel):
    """One billing bracket. ``max_errors`` is a cumulative ceiling; None means unbounded."""
    max_errors: Optional[int] = Field(default=None, description="Cumulative error ceiling of the tier")
    rate_per_error: float = Field(description="Charge per error inside the tier")

    @field_validator("rate_per_error")
    @classmethod
    def _positive_rate(cls, value: float) -> float:
        if value < 0:
            raise ValueError("rate_per_error must be >= 0")
        return value


def _default_tiers() -> list[BillingTierConfig]:
    return [
        BillingTierConfig(max_errors=1000, rate_per_error=0.10),
        BillingTierConfig(max_errors=5000, rate_per_error=0.09),
        BillingTierConfig(max_errors=10000, rate_per_error=0.08),
        BillingTierConfig(max_errors=None, rate_per_error=0.07),
    ]


class BillingConfig(BaseModel):
    """Tiered error billing."""
    currency_symbol: str = Field(default="R", description="Symbol used in formatted amounts")
    tiers: list[BillingTierConfig] = Field(default_factory=_default_tiers)

    @model_validator(mode="after")
    def _check_tiers(self) -> "BillingConfig":
        if not self.tiers:
            raise ValueError("at least one billing tier is required")
        if self.tiers[-1].max_errors is not None:
            raise ValueError("the last billing tier must be unbounded")
        previous = 0
        for tier in self.tiers[:-1]:
            if tier.max_errors is None:
                raise ValueError("only the last billing tier may be unbounded")
            if tier.max_errors <= previous:
                raise ValueError("billing tier ceilings must be strictly ascending")
            previous = tier.max_errors
        return self


class SeverityThreshold(BaseModel):
    min_failures: int = Field(ge=1)
    severity: Severity


def _default_thresholds() -> list[SeverityThreshold]:
    return [
        SeverityThreshold(min_failures=10, severity=Severity.CRITICAL),
        SeverityThreshold(min_failures=5, severity=Severity.HIGH),
        SeverityThreshold(min_failures=3, severity=Severity.MEDIUM),
        SeverityThreshold(min_failures=1, severity=Severity.LOW),
    ]


class EscalationConfig(BaseModel):
    """Connectivity escalation and alert routing."""
    severity_thresholds: list[SeverityThreshold] = Field(default_factory=_default_thresholds)
    report_at_failures: list[int] = Field(default_factory=lambda: [1, 5, 10], description="Failure counts that always emit an issue report")
    report_every_failures: int = Field(default=30, ge=1, description="Emit an issue report on every multiple of this count")
    extended_outage_window_minutes: int = Field(default=30, ge=1)
    extended_outage_min_alerts: int = Field(default=3, ge=1)
    slow_response_ms: int = Field(default=5000, description="Latency above which a failure is a connection error")
    site_name: str = Field(default="Student Residence WiFi Management")


class OperationalSlotConfig(BaseModel):
    time: str = Field(description="Wall-clock time HH:MM")
    report_type: ReportType
    name: str

    @field_validator("time")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        hour, minute = value.split(":")
        if not (0 <= int(hour) <= 23 and 0 <= int(minute) <= 59):
            raise ValueError(f"Invalid time of day: {value}")
        return value

    @property
    def hour(self) -> int:
        return int(self.time.split(":")[0])

    @property
    def minute(self) -> int:
        return int(self.time.split(":")[1])


def _default_slots() -> list[OperationalSlotConfig]:
    return [
        OperationalSlotConfig(time="08:00", report_type=ReportType.MORNING, name="Opening Report"),
        OperationalSlotConfig(time="12:00", report_type=ReportType.MIDDAY, name="Midday Report"),
        OperationalSlotConfig(time="18:00", report_type=ReportType.EVENING, name="Closing Report"),
    ]


class ScheduleConfig(BaseModel):
    """Report cycle scheduling."""
    timezone: str = Field(default="UTC", description="Timezone of the wall-clock slots")
    operational_reports: list[OperationalSlotConfig] = Field(default_factory=_default_slots)
    monthly_reports_enabled: bool = Field(default=True)
    poll_interval_seconds: int = Field(default=60, ge=1, description="Safety-net poll of the slot guard")
    cycle_timeout_seconds: float = Field(default=300.0, gt=0, description="Deadline for a single cycle")


class ProbeConfig(BaseModel):
    """Connectivity probe of the network-access controller."""
    target: str = Field(default="MIKROTIK")
    health_url: Optional[str] = Field(default=None)
    interval_seconds: int = Field(default=60, ge=1)
    timeout_seconds: float = Field(default=10.0, gt=0)


def _default_provider_emails() -> Dict[str, str]:
    return {
        Provider.MIKROTIK.value: "support@mikrotik.com",
        Provider.WHATSAPP.value: "api-support@whatsapp.com",
        Provider.EMAIL.value: "support@emailprovider.com",
        Provider.CLERK.value: "support@clerk.dev",
        Provider.OTHER.value: "support@surelink.cloud",
    }


class NotificationConfig(BaseModel):
    """Outbound messaging and email relays."""
    messaging_relay_url: Optional[str] = Field(default=None)
    messaging_api_key: Optional[str] = Field(default=None)
    messaging_group_id: Optional[str] = Field(default=None)
    email_relay_url: Optional[str] = Field(default=None)
    support_email: str = Field(default="support@surelink.com")
    creator_email: str = Field(default="creator@surelink.com")
    provider_emails: Dict[str, str] = Field(default_factory=_default_provider_emails)
    max_message_length: int = Field(default=3900, ge=100)
    request_timeout_seconds: float = Field(default=15.0, gt=0)
    queue_size: int = Field(default=100, ge=1, description="Bounded notification queue size")
    max_attempts: int = Field(default=4, ge=1)
    backoff_base_seconds: float = Field(default=1.0, ge=0)
    backoff_max_seconds: float = Field(default=30.0, ge=0)


class ArchiveConfig(BaseModel):
    directory: Optional[str] = Field(default=None, description="Mirror archived reports as JSON files here")
    version: str = Field(default="1.0.0")
    months_to_keep: int = Field(default=24, ge=1)
    generated_by: str = Field(default="scheduler")


class UnitsConfig(BaseModel):
    """Unit inventory of the network-access controller."""
    api_url: Optional[str] = Field(default=None)
    api_key: Optional[str] = Field(default=None)


class MonitoringConfig(BaseModel):
    """Main configuration for the monitoring pipeline."""

    environment: str = Field(default="production", description="Deployment environment")
    log_level: str = Field(default="INFO", description="Logging level")

    providers: list[Provider] = Field(default_factory=lambda: list(Provider))
    error_retention_days: int = Field(default=400, ge=1)

    billing: BillingConfig = Field(default_factory=BillingConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    probe: ProbeConfig = Field(default_factory=ProbeConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    units: UnitsConfig = Field(default_factory=UnitsConfig)


# env var -> (section, key); section None means top level
_ENV_OVERRIDES: Dict[str, tuple[Optional[str], str]] = {
    "MONITORING_ENV": (None, "environment"),
    "LOG_LEVEL": (None, "log_level"),
    "MONITORING_TIMEZONE": ("schedule", "timezone"),
    "MESSAGING_RELAY_URL": ("notifications", "messaging_relay_url"),
    "MESSAGING_RELAY_API_KEY": ("notifications", "messaging_api_key"),
    "MESSAGING_GROUP_ID": ("notifications", "messaging_group_id"),
    "EMAIL_RELAY_URL": ("notifications", "email_relay_url"),
    "ARCHIVE_DIRECTORY": ("archive", "directory"),
    "HEALTH_CHECK_URL": ("probe", "health_url"),
    "UNITS_API_URL": ("units", "api_url"),
    "UNITS_API_KEY": ("units", "api_key"),
}


def load_config(config_path: Optional[str] = None) -> MonitoringConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("MONITORING_CONFIG", "config/monitoring.yaml")

    config_data: Dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is None:
            continue
        if section is None:
            config_data[key] = value
        else:
            section_data = config_data.setdefault(section, {}) or {}
            section_data[key] = value
            config_data[section] = section_data

    return MonitoringConfig(**config_data)


def get_config() -> MonitoringConfig:
    """Get the configuration instance for this process."""
    return load_config()
