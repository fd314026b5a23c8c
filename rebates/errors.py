"""
Error taxonomy for the Talent Rebate Engine.

Each error carries the HTTP status code the request layer answers with.
"""


class RebateError(Exception):
    """Base class. Unclassified failures are infrastructure failures."""

    status_code = 500


class ValidationError(RebateError, ValueError):
    """Request-shape validation failed; nothing was written."""

    status_code = 400


class NotFoundError(RebateError, LookupError):
    """A referenced entity does not exist."""

    status_code = 404


class StoreUnavailableError(RebateError):
    """The document store cannot be reached."""

    status_code = 500
