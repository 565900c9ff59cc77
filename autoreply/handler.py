"""
Inbound message handling: decide whether to auto-reply, then log.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from autoreply.messaging import TwilioMessenger
from autoreply.schemas import InboundMessage, LogRow
from autoreply.sheets import SheetsLogStore
from autoreply.utils import local_now

logger = logging.getLogger(__name__)


@dataclass
class HandleResult:
    """
    Outcome of one inbound message.

    `reply` holds the text to embed in the TwiML response; it stays None
    when no reply is owed or when the reply already went out through the
    Messages API.
    """
    replied: bool
    reply: Optional[str] = None
    message_sid: Optional[str] = None
    logged: bool = False


class WebhookHandler:
    """
    Replies once per sender and logs every message.

    A sender counts as known once any row in the log sheet carries its
    identity. The check and the log append are both best-effort; only a
    failed API dispatch propagates, and the route turns that into an empty
    acknowledgment.
    """

    def __init__(
        self,
        store: SheetsLogStore,
        reply_text: str,
        messenger: Optional[TwilioMessenger] = None,
        reply_via_api: bool = False,
        default_from: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if reply_via_api and messenger is None:
            raise ValueError("reply_via_api requires a messenger")
        self.store = store
        self.reply_text = reply_text
        self.messenger = messenger
        self.reply_via_api = reply_via_api
        self.default_from = default_from
        self.clock = clock or local_now

    def is_known_sender(self, sender: str) -> bool:
        try:
            return self.store.sender_exists(sender)
        except Exception as e:
            logger.error(f"Error checking sender {sender}, will send reply anyway: {e}")
            return False

    def handle(self, message: InboundMessage) -> HandleResult:
        arrived = self.clock()
        sender = message.from_number
        logger.info(f"Incoming message from: {sender}")
        logger.debug(f"Message: {message.body}")

        if self.is_known_sender(sender):
            logger.info(f"Sender {sender} already logged, skipping auto-reply")
            result = HandleResult(replied=False)
        else:
            result = self._reply(message)

        result.logged = self._log(LogRow.capture(sender, message.body, arrived))
        return result

    def _reply(self, message: InboundMessage) -> HandleResult:
        if not self.reply_via_api:
            logger.info(f"Auto-reply queued in TwiML for {message.from_number}")
            return HandleResult(replied=True, reply=self.reply_text)

        sid = self.messenger.send(
            to=message.from_number,
            from_=message.to_number or self.default_from,
            body=self.reply_text,
        )
        logger.info(f"Auto-reply sent to {message.from_number}: {sid}")
        return HandleResult(replied=True, message_sid=sid)

    def _log(self, row: LogRow) -> bool:
        try:
            self.store.append_row(row)
        except Exception as e:
            logger.error(f"Error logging message from {row.phone} to Google Sheets: {e}")
            return False
        logger.info("Message logged to Google Sheets")
        return True
