"""
Error taxonomy for the capture-to-resolution pipeline.

Every error carries a short user-facing message next to the technical one so
that the CLI and the HTTP API can surface an actionable status without
re-mapping exception types.
"""

from typing import Optional


class ScannerError(Exception):
    user_message = "Something went wrong. You can enter the ISBN manually."

    def __init__(self, message: Optional[str] = None, *, user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message:
            self.user_message = user_message

    @property
    def category(self) -> str:
        return type(self).__name__


class DeviceError(ScannerError):
    """Camera could not be acquired. Never retried automatically."""


class DeviceUnavailable(DeviceError):
    user_message = "No camera found on this device. Please enter the ISBN manually."


class DevicePermissionDenied(DeviceError):
    user_message = "Camera permission denied. Please allow camera access in your settings."


class DeviceBusy(DeviceError):
    user_message = "Camera is being used by another app. Please close it and try again."


class InsecureContext(DeviceError):
    user_message = "Camera access requires HTTPS or local access. Please use a secure connection or local server."


class CaptureFailure(ScannerError):
    user_message = "Error capturing photo. Please try again."


class RecognitionFailure(ScannerError):
    user_message = "Error analyzing photo. Try again."


class Timeout(ScannerError):
    user_message = "The lookup took too long."


class NotFound(ScannerError):
    user_message = "Book not found in database. You can enter details manually."


class InvalidFormat(ScannerError):
    user_message = "Invalid ISBN format. Please enter a valid ISBN-10 or ISBN-13."


class PersistenceFailure(ScannerError):
    user_message = "Could not save the book to your library. Please try again."


class DuplicateRecord(ScannerError):
    user_message = "This book is already in your library."

    def __init__(self, title: str, author: str):
        super().__init__(
            f"duplicate record: {title!r} by {author!r}",
            user_message=f'"{title}" by {author} is already in your library.',
        )
        self.title = title
        self.author = author
