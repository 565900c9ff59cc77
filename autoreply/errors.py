"""
Exception types raised by the auto-responder.

The logging path (Google Sheets) and the reply path (Twilio) each raise
their own errors so the webhook route can decide which ones to absorb.
"""

from typing import Optional


class AutoReplyError(Exception):
    """Base class for all service errors."""


class AuthenticationError(AutoReplyError):
    """Google credentials are missing, unparsable or rejected."""


class ConnectivityError(AutoReplyError):
    """A provider could not be reached."""


class WriteError(AutoReplyError):
    """The spreadsheet provider rejected an append."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedInput(AutoReplyError):
    """The inbound webhook payload does not have the expected shape."""


class DispatchError(AutoReplyError):
    """Twilio refused or failed to send an outbound message."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
