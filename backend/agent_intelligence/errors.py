# backend/agent_intelligence/errors.py
"""
Error taxonomy shared by the ledger, registry, experiment engine,
approval workflow and aggregator.

HTTP routers map these onto status codes via STATUS_CODES.
"""


class IntelligenceError(Exception):
    """Base class for every error raised by the engine."""
    pass


class NotFound(IntelligenceError):
    """A referenced decision, version, experiment or request does not exist."""
    pass


class InvalidState(IntelligenceError):
    """The entity is not in a state that allows the requested transition."""
    pass


class ValidationFailure(IntelligenceError):
    """Malformed input, e.g. experiment arms from different agents."""
    pass


class ExternalDependencyFailure(IntelligenceError):
    """The analysis dependency was unreachable or returned unusable output."""
    pass


class StoreUnavailable(IntelligenceError):
    """The relational store rejected or failed a write."""
    pass


STATUS_CODES = {
    NotFound: 404,
    InvalidState: 409,
    ValidationFailure: 422,
    ExternalDependencyFailure: 502,
    StoreUnavailable: 503,
}


def status_code_for(error: IntelligenceError) -> int:
    for error_type, code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return code
    return 500
