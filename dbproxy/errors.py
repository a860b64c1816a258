# dbproxy/errors.py
from __future__ import annotations


class GatewayError(Exception):
    """Base for every failure the gateway turns into an error envelope."""

    status: int = 500

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class MalformedRequest(GatewayError):
    """Body failed shape validation before any policy check ran."""

    status = 400


class PolicyViolation(GatewayError):
    """One named policy layer denied the request."""

    status = 403


class StoreError(GatewayError):
    """The backing store rejected a well-formed, permitted query."""

    status = 400


class InternalError(GatewayError):
    """Unexpected failure inside the gateway or a store call that never answered."""

    status = 500
