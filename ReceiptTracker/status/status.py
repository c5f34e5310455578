"""Status definitions and exceptions for ReceiptTracker.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions raised by the remote client, the local store and the sync engine
"""
import enum
import logging
from typing import Dict


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    SettingsNotFound = enum.auto()
    SettingsInvalid = enum.auto()

    # Remote store status
    ApiUrlNotConfigured = enum.auto()
    ServiceUnavailable = enum.auto()
    RemoteRequestFailed = enum.auto()
    RemoteResponseInvalid = enum.auto()

    # Session status
    PermissionDenied = enum.auto()

    # Analysis status
    AnalysisFailed = enum.auto()

    CacheInvalid = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.SettingsNotFound: 'Could not find the settings file.',
    Status.SettingsInvalid: 'The settings file seems to be incomplete, or contains invalid values.',

    Status.ApiUrlNotConfigured: 'The sync server address is not set. Have you set "remote.url" or SYNC_API_URL?',
    Status.ServiceUnavailable: 'The sync server is unreachable. Please check your connection.',
    Status.RemoteRequestFailed: 'The sync server rejected the request.',
    Status.RemoteResponseInvalid: 'The sync server returned a response that could not be read.',

    Status.PermissionDenied: 'The current session is not allowed to do this.',

    Status.AnalysisFailed: 'Could not analyze the receipt image.',

    Status.CacheInvalid: 'The local cache is invalid. Try resetting the local data.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in ReceiptTracker.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)

        from ..ui.actions import signals
        signals.error.emit(message or self.status_message)


class UnknownException(BaseStatusException):
    """Exception for an unknown error during status processing."""
    pass


class SettingsNotFoundException(BaseStatusException):
    """Exception raised when the settings file cannot be found."""
    status = Status.SettingsNotFound


class SettingsInvalidException(BaseStatusException):
    """Exception raised when the settings file is invalid or malformed."""
    status = Status.SettingsInvalid


class ApiUrlNotConfiguredException(BaseStatusException):
    """Exception raised when no sync server address is configured."""
    status = Status.ApiUrlNotConfigured


class ServiceUnavailableException(BaseStatusException):
    """Exception raised when the sync server cannot be reached."""
    status = Status.ServiceUnavailable


class RemoteRequestFailedException(BaseStatusException):
    """Exception raised when the sync server answers with a non-2xx status."""
    status = Status.RemoteRequestFailed

    def __init__(self, message: str = None, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class RemoteResponseInvalidException(BaseStatusException):
    """Exception raised when a sync server response cannot be decoded."""
    status = Status.RemoteResponseInvalid


class PermissionDeniedException(BaseStatusException):
    """Exception raised when the session role does not allow an operation."""
    status = Status.PermissionDenied


class AnalysisFailedException(BaseStatusException):
    """Exception raised when the image-understanding backend fails."""
    status = Status.AnalysisFailed


class CacheInvalidException(BaseStatusException):
    """Exception raised when the local cache database cannot be used."""
    status = Status.CacheInvalid
