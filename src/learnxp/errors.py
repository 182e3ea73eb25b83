"""Exceptions raised by collaborators and their mapping onto ``ErrorKind``."""

from __future__ import annotations

import asyncio

from learnxp.result import Error, ErrorKind


class RemoteError(Exception):
    """Raised by remote adapters with an already-classified kind."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.NETWORK, status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class StorageError(Exception):
    """Raised by persistence adapters when a read or write fails."""


def classify_remote_exception(exc: BaseException) -> ErrorKind:
    """Map an exception raised by a remote collaborator to an error kind."""
    if isinstance(exc, RemoteError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, (ConnectionError, OSError)):
        return ErrorKind.NETWORK
    if isinstance(exc, (ValueError, KeyError, TypeError)):
        return ErrorKind.PARSING
    return ErrorKind.UNKNOWN


def remote_error(exc: BaseException, action: str) -> Error:
    """Build an Error result for a failed remote call."""
    kind = classify_remote_exception(exc)
    return Error(f"{action} failed: {exc}", kind=kind, cause=exc)


def storage_error(exc: BaseException, action: str, partial: object = None) -> Error:
    """Build a STORAGE Error result, optionally carrying the best-effort value."""
    return Error(f"{action} failed: {exc}", kind=ErrorKind.STORAGE, cause=exc, partial=partial)
