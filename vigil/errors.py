"""Error taxonomy for Vigil.

Failures are contained at the smallest sensible unit (one adapter, one
tenant, one job) and reported upward as data. Only configuration loading and
an adapter's own initialization health check are allowed to raise past their
owner.
"""


class VigilError(Exception):
    """Base class for Vigil errors."""

    pass


class AdapterConfigurationError(VigilError):
    """Raised when an adapter config is missing a field or is invalid."""

    pass


class UnknownAdapterKindError(AdapterConfigurationError):
    """Raised when no adapter implementation is bound to a config's type."""

    def __init__(self, declared_type: str, kind_key: str):
        self.declared_type = declared_type
        self.kind_key = kind_key
        super().__init__(
            f"Unknown adapter type: {declared_type} (constructor key: {kind_key})"
        )


class AdapterConnectivityError(VigilError):
    """Raised when an adapter fails its initialization health probe."""

    def __init__(self, adapter_id: str, message: str | None):
        self.adapter_id = adapter_id
        super().__init__(f"Adapter {adapter_id} failed health check: {message}")


class CollectionFault(VigilError):
    """A failure during an evidence pull.

    Adapters may raise it with a specific ``code``; ``EvidenceAdapter.collect``
    converts it (and any other exception) into a ``CollectionError``.
    """

    code = "COLLECTION_EXCEPTION"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        if code:
            self.code = code


class RegistryInitializationError(VigilError):
    """Raised when a tenant registry cannot load its adapter configurations."""

    pass


class SchedulingFault(VigilError):
    """A job body failed; captured into a failed ``JobResult``."""

    def __init__(self, job_id: str, cause: BaseException):
        self.job_id = job_id
        self.cause = cause
        super().__init__(str(cause) or type(cause).__name__)


class UnknownJobError(VigilError):
    """Raised when a job id is not part of the scheduler's job table."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Unknown job: {job_id}")


class AssessmentNotFoundError(VigilError):
    """Raised when a completed assessment cannot be found."""

    pass


class StoreError(VigilError):
    """Raised when a persistence collaborator returns an unusable response."""

    pass
