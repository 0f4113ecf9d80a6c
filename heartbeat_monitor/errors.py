from __future__ import annotations


class HeartbeatError(Exception):
    """Base class for errors raised by the heartbeat monitor."""


class ClientInputError(HeartbeatError):
    code = "bad_request"


class MissingHostError(ClientInputError):
    code = "missing_host"

    def __init__(self, message: str = "Missing host identifier") -> None:
        super().__init__(message)


class InvalidIntervalError(ClientInputError):
    code = "invalid_interval"

    def __init__(self, token: str, reason: str = "") -> None:
        self.token = token
        msg = f"Invalid interval {token!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class StoreError(HeartbeatError):
    """A host store read or write failed."""
