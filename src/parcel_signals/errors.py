from __future__ import annotations

from typing import Any, Dict, Optional


BODY_PREVIEW_CHARS = 300


class PipelineError(Exception):
    """Base class for every error raised by the ingestion/scoring pipeline."""


class ConfigurationError(PipelineError):
    """Unsupported jurisdiction or missing configuration.

    Raised before any I/O happens, so no ingestion job is ever created for it.
    """


class SourceError(PipelineError):
    """The external parcel API answered with a non-success or malformed payload."""

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        params: Optional[Dict[str, Any]] = None,
        status: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.url = url
        self.params = dict(params or {})
        self.status = status
        self.body = (body or "")[:BODY_PREVIEW_CHARS]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": str(self),
            "url": self.url,
            "params": self.params,
            "status": self.status,
            "body": self.body,
        }


class RecordError(PipelineError):
    """A single source record cannot be ingested; it is skipped and counted."""

    reason = "invalid_record"


class MissingNaturalKey(RecordError):
    reason = "missing_pin"


class MissingSequence(RecordError):
    reason = "missing_sequence"


class UnsupportedGeometry(RecordError):
    reason = "unsupported_geometry"


class WriteError(PipelineError):
    """Storage rejected a batch even after the retry at a smaller size."""

    def __init__(self, message: str, *, rows: int = 0) -> None:
        super().__init__(message)
        self.rows = rows


class LeaseLost(PipelineError):
    """Another invocation took over the ingestion job; stop without writing progress."""

    def __init__(self, message: str, *, job_id: Optional[int] = None, holder: Optional[str] = None) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.holder = holder
