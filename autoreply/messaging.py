"""
Outbound WhatsApp messages through the Twilio Messages API.
"""

import logging
from typing import Optional

from requests import RequestException
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client

from autoreply.config import Settings
from autoreply.errors import DispatchError

logger = logging.getLogger(__name__)


class TwilioMessenger:
    """Thin wrapper over twilio.rest.Client used for replies and /send-message."""

    def __init__(self, client: Client):
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "TwilioMessenger":
        return cls(Client(settings.ACCOUNT_SID, settings.AUTH_TOKEN))

    def send(
        self,
        to: str,
        from_: str,
        body: Optional[str] = None,
        content_sid: Optional[str] = None,
        content_variables: Optional[str] = None,
    ) -> str:
        """
        Send one message and return its SID.

        Either free text (`body`) or a content template (`content_sid` plus
        a JSON string of `content_variables`) is sent; the template wins if
        both are given.

        Raises:
            DispatchError: Twilio rejected the request or was unreachable
        """
        params = {"to": to, "from_": from_}
        if content_sid:
            params["content_sid"] = content_sid
            if content_variables:
                params["content_variables"] = content_variables
        elif body is not None:
            params["body"] = body
        else:
            raise DispatchError("Either body or content_sid is required")

        try:
            message = self.client.messages.create(**params)
        except TwilioRestException as e:
            logger.error(f"Twilio rejected message to {to}: {e.msg}")
            raise DispatchError(str(e.msg), status_code=e.status) from e
        except (TwilioException, RequestException) as e:
            logger.error(f"Twilio dispatch to {to} failed: {e}")
            raise DispatchError(str(e)) from e

        logger.info(f"Message sent successfully: {message.sid}")
        return message.sid
