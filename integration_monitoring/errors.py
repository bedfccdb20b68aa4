"""Exception taxonomy for the monitoring pipeline."""


class MonitoringError(Exception):
    """Base class for pipeline errors."""


class IngestionError(MonitoringError):
    """A malformed error event was rejected at ingestion."""


class NotificationDispatchError(MonitoringError):
    """An outbound message or email could not be delivered."""

    def __init__(self, message: str, *, channel: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.channel = channel
        self.status_code = status_code


class ArchiveWriteError(MonitoringError):
    """A report could not be serialized or persisted.

    The report is kept in the archive's pending buffer; ``report_id`` points
    at the buffered entry when one was created.
    """

    def __init__(self, message: str, *, report_id: str | None = None):
        super().__init__(message)
        self.report_id = report_id
