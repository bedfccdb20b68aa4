"""Error collection for monitored integrations."""

from .error_collector import ErrorCollector, ErrorRecord, ErrorReport, ProviderStats

__all__ = ["ErrorCollector", "ErrorRecord", "ErrorReport", "ProviderStats"]
