"""Error taxonomy shared by every component.

Pipeline errors are fatal for a single job and are caught at the job boundary.
Client errors are reported synchronously to whoever invoked an operation.
"""


class ReconciliationError(Exception):
    """Base class for all platform errors."""


class PipelineError(ReconciliationError):
    """Failure that ends a document processing job."""


class ExtractionFailure(PipelineError):
    """Document text could not be obtained by any method."""


class SchemaValidationFailure(PipelineError):
    """AI output did not conform to the expected structure."""


class ExtractionServiceFailure(PipelineError):
    """Transport or availability failure of an external AI, embedding or narrative call."""


class ClientError(ReconciliationError):
    """Error caused by the request itself; never retried."""


class NotFoundError(ClientError):
    """Referenced vendor, contract, invoice or report does not exist (or is soft-deleted)."""


class ConflictError(ClientError):
    """A uniqueness invariant would be violated."""


class InvalidStatusTransition(ClientError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, entity: str, current: str, requested: str) -> None:
        super().__init__(f"{entity} cannot move from '{current}' to '{requested}'")
        self.entity = entity
        self.current = current
        self.requested = requested


class StorageFailure(PipelineError):
    """Blob store backend could not complete an operation."""


class InvalidDocument(ClientError):
    """Uploaded file is empty or exceeds the size limit."""
