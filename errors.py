"""Typed failures raised by the verifier and its collaborators.

Nothing here is ever converted into a "safe" outcome: a caller that catches
one of these must treat the pair as unknown.
"""


class VerifierError(Exception):
    """Root of every error this project raises on purpose."""


class DimensionMismatch(VerifierError, ValueError):
    def __init__(self, len_a: int, len_b: int):
        super().__init__(f"Vector dimensions don't match: {len_a} vs {len_b}")
        self.len_a = len_a
        self.len_b = len_b


class VerificationError(VerifierError):
    """A single pair could not be verified."""


class MalformedJudgment(VerificationError):
    """The judgment response contained no parseable JSON object."""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response


class InvalidJudgment(VerificationError):
    """Parsed, but a field or cross-field invariant is wrong."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field


class CollaboratorUnavailable(VerificationError):
    """Network, auth, rate-limit or timeout failure from an external service."""

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator} unavailable: {message}")
        self.collaborator = collaborator


class DiscoveryPartialFailure(VerifierError):
    """One venue's discovery failed during a batch; the batch carries on."""

    def __init__(self, venue: str, cause: Exception):
        super().__init__(f"Discovery failed for {venue}: {cause}")
        self.venue = venue
        self.cause = cause


class MarketNotFound(VerifierError):
    def __init__(self, venue: str, identifier: str):
        super().__init__(f"{venue} market not found: {identifier}")
        self.venue = venue
        self.identifier = identifier
