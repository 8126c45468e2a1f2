"""Exception hierarchy for nearbuy.

None of these are fatal to a search: callers catch them at the source, record or
marker boundary and degrade to partial results.
"""

from __future__ import annotations


class NearBuyError(Exception):
    """Base exception for all nearbuy errors."""


class SourceUnavailable(NearBuyError):
    """One listing source failed, timed out, or is not configured."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"{source} unavailable: {reason}")


class MalformedRecord(NearBuyError):
    """A raw source record could not be normalized."""

    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"Malformed {source} record: {detail}")


class InvalidCoordinate(NearBuyError, ValueError):
    """A latitude/longitude pair is non-finite or out of range."""

    def __init__(self, lat: object, lon: object):
        self.lat = lat
        self.lon = lon
        super().__init__(f"Invalid coordinate: lat={lat!r} lon={lon!r}")


class StaleRequest(NearBuyError):
    """A search result arrived after a newer request superseded it."""

    def __init__(self, token: int, latest: int):
        self.token = token
        self.latest = latest
        super().__init__(f"Request {token} superseded by {latest}")


class ReconcileInProgress(NearBuyError, RuntimeError):
    """A marker set was reconciled while another reconcile on it was running."""


class CredentialMissing(NearBuyError):
    """A required API credential is not configured."""

    def __init__(self, name: str, hint: str = ""):
        self.name = name
        message = f"Credential '{name}' is not configured."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)
