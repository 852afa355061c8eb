"""Exception types raised below the scheduler boundary."""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for monitor errors."""


class ConfigurationError(MonitorError):
    """Raised when a check references configuration that does not exist or is unsupported."""


class TokenAcquisitionError(MonitorError):
    def __init__(self, token_url: str, status_code: int, body: str) -> None:
        self.token_url = token_url
        self.status_code = status_code
        self.body = body
        super().__init__(f"Token request failed: {status_code} {body[:300]}")


class VaultError(MonitorError):
    def __init__(self, name: str, status_code: int, body: str) -> None:
        self.name = name
        self.status_code = status_code
        super().__init__(f"Vault lookup for {name!r} failed: {status_code} {body[:300]}")
