"""Error types shared by the directory, session and suggestion layers.

Messages carry diagnostic detail for the log only; the dispatcher never
forwards them to clients.
"""
from __future__ import annotations


class LookupGatewayError(Exception):
    """Base error for all gateway operations."""


class AuthError(LookupGatewayError):
    """Authentication attempt failed (terminal for that attempt)."""


class DirectoryUnavailable(AuthError):
    """Connect/read timeout or LDAP protocol fault."""


class NotFound(AuthError):
    """No account matches the logon name."""


class Unauthorized(AuthError):
    """Account is not a member of the required group."""


class InvalidCredentials(AuthError):
    """The account's own bind was rejected (or the credentials were empty)."""


class InvalidToken(LookupGatewayError):
    """Reattachment token is malformed or names no live login."""


class IndexUnavailable(LookupGatewayError):
    """The username index query failed."""


class MalformedRequest(LookupGatewayError):
    """Inbound message is missing fields or has invalid values."""
