"""Error kinds raised by the live sync pipeline.

Every failure the pipeline knows how to report derives from LiveSyncError,
so the orchestrator can turn it into a failed run with a readable reason.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fpl_live.services.upsert import BatchResult


class LiveSyncError(Exception):
    """Base class for expected live sync failures."""


class SourceUnavailable(LiveSyncError):
    """The FPL API could not be reached or answered with a non-200 status."""

    def __init__(self, endpoint: str, status: int | None = None, detail: str = ""):
        self.endpoint = endpoint
        self.status = status
        self.detail = detail
        message = f"FPL API request to {endpoint} failed"
        if status is not None:
            message += f" with status {status}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class MalformedResponse(SourceUnavailable):
    """The FPL API answered 200 but the body lacks the expected structure."""

    def __init__(self, endpoint: str, detail: str):
        super().__init__(endpoint, 200, detail)


class ValidationFailed(LiveSyncError):
    """Fetched snapshots failed one or more hard plausibility checks."""

    def __init__(self, reasons: list[str]):
        self.reasons = list(reasons)
        super().__init__("Validation failed: " + "; ".join(self.reasons))


class StorageConnectionFailed(LiveSyncError):
    """The database connection could not be established."""


class UnexpectedStorageError(LiveSyncError):
    """A reference-data write failed; dependent writes must not run."""

    def __init__(self, record_type: str, detail: str):
        self.record_type = record_type
        self.detail = detail
        super().__init__(f"Failed to write {record_type}: {detail}")


class PartialBatchFailure(LiveSyncError):
    """Some rows of a best-effort batch could not be written."""

    def __init__(self, batch: "BatchResult"):
        self.batch = batch
        super().__init__(
            f"Failed to update {batch.failed} of {batch.attempted} {batch.name} rows"
        )

    @property
    def failed(self) -> int:
        return self.batch.failed
