"""Error taxonomy shared by the job store, adapters and agent loop."""

from __future__ import annotations


class PersevereError(RuntimeError):
    """Base class for all domain errors."""


class PreconditionFailed(PersevereError):
    """A run was requested for a job that cannot start. Nothing was changed."""


class JobNotFound(PreconditionFailed):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobNotQueued(PreconditionFailed):
    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(f"Job is not in queued status: job_id={job_id} status={status}")
        self.job_id = job_id
        self.status = status


class JobStateConflict(PersevereError):
    """A guarded job update matched no row (state changed concurrently)."""


class AdapterFailure(PersevereError):
    """An external call (LLM, VCS) failed after fallback was exhausted."""


class ExtractionFailed(AdapterFailure):
    """Structured extraction did not yield a schema-valid object."""

    reason = "extraction_failed"


class ProviderError(ExtractionFailed):
    """The completion provider call itself failed."""

    reason = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        failure_class: str | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.failure_class = failure_class
        self.transient = transient


class NoJsonObjectFound(ExtractionFailed):
    """The model response contains no balanced JSON object."""

    reason = "no_json_object"


class InvalidStructuredOutput(ExtractionFailed):
    """A JSON object was found but is malformed or violates the schema."""

    reason = "invalid_object"


class VcsError(AdapterFailure):
    """Version-control operation failed."""


class RefNotFound(VcsError):
    def __init__(self, ref: str) -> None:
        super().__init__(f"Git ref not found: {ref}")
        self.ref = ref


class RefAlreadyExists(VcsError):
    def __init__(self, ref: str) -> None:
        super().__init__(f"Git ref already exists: {ref}")
        self.ref = ref
