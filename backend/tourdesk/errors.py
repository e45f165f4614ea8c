"""Error taxonomy for upstream integration, caching and enrichment.

Only configuration and authentication-protocol errors are allowed to cross
the orchestrator boundary. Everything else is recovered locally as an empty
or partial result and logged.
"""


class TourdeskError(Exception):
    """Base class for all tourdesk errors."""


class ConfigurationError(TourdeskError):
    """A required secret or setting is missing. Fatal, surfaced to the operator."""


class AuthConfigurationError(ConfigurationError):
    """Upstream login or password is not configured."""


class AuthProtocolError(TourdeskError):
    """Login call failed or did not return every required session cookie."""


class SessionExpiredError(TourdeskError):
    """Upstream answered 401; the caller must re-authenticate."""


class UpstreamRequestError(TourdeskError):
    """Non-2xx status, transport failure or malformed JSON from a collaborator."""

    def __init__(self, message: str, status_code: int | None = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class UnknownLocationError(TourdeskError):
    """A human-entered location did not match any reference record."""

    def __init__(self, kind: str, name: str):
        super().__init__(f"Unknown {kind}: {name}")
        self.kind = kind
        self.name = name


class EnrichmentItemError(TourdeskError):
    """Enrichment of a single tour failed. Isolated from the rest of the batch."""

    def __init__(self, tour_id: str, cause: BaseException):
        super().__init__(f"Enrichment failed for tour {tour_id}: {cause}")
        self.tour_id = tour_id
        self.cause = cause


class NarrativeGenerationError(UpstreamRequestError):
    """The language model returned nothing usable for a declared schema."""
