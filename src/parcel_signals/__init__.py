from parcel_signals.errors import (
    ConfigurationError,
    PipelineError,
    SourceError,
    WriteError,
)
from parcel_signals.pipeline import (
    check_acceptance,
    ingest_jurisdiction,
    run_until_complete,
    score_jurisdiction,
)
from parcel_signals.storage import ParcelStore

__all__ = [
    "ConfigurationError",
    "ParcelStore",
    "PipelineError",
    "SourceError",
    "WriteError",
    "check_acceptance",
    "ingest_jurisdiction",
    "run_until_complete",
    "score_jurisdiction",
]
