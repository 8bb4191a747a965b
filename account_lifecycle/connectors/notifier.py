"""
Notification Connector.

Sends a rendered email to a single address. Delivery failures are
returned as failed results; callers decide whether they matter.
"""

import logging
from abc import abstractmethod
from typing import Any, Dict, List, Optional

import boto3

from ..notifications.templates import RenderedMessage
from .base_connector import BOTO_ERRORS, BaseConnector, ConnectorResult, MockConnector

logger = logging.getLogger(__name__)


class Notifier(BaseConnector):
    """Interface for the transactional email channel."""

    system_name = "notifier"

    @abstractmethod
    def send(self, to_address: str, message: RenderedMessage) -> ConnectorResult:
        """
        Send a message to one address.

        Args:
            to_address: Recipient email address
            message: Rendered subject, text and html bodies

        Returns:
            ConnectorResult with {"message_id": str} as data on success
        """


class SESNotifier(Notifier):
    """Notifier backed by SES."""

    def __init__(self, source_email: str, reply_to: Optional[str] = None,
                 region: str = "us-east-1", client: Optional[Any] = None):
        super().__init__(mock_mode=False)
        self.source_email = source_email
        self.reply_to = reply_to or source_email
        self.client = client or boto3.client("ses", region_name=region)

    def validate_config(self) -> bool:
        return bool(self.source_email)

    def send(self, to_address: str, message: RenderedMessage) -> ConnectorResult:
        try:
            response = self.client.send_email(
                Source=self.source_email,
                Destination={"ToAddresses": [to_address]},
                Message={
                    "Subject": {"Data": message.subject},
                    "Body": {
                        "Text": {"Data": message.text},
                        "Html": {"Data": message.html},
                    },
                },
                ReplyToAddresses=[self.reply_to],
            )
            message_id = response.get("MessageId")
            logger.info(f"Sent '{message.subject}' to {to_address} ({message_id})")
            return ConnectorResult(True, f"Sent email to {to_address}", {"message_id": message_id})

        except BOTO_ERRORS as e:
            return self._client_failure(f"send email to {to_address}", e)


class MockNotifier(MockConnector, Notifier):
    """Notifier that keeps sent messages in an outbox."""

    def __init__(self):
        super().__init__()
        self.outbox: List[Dict[str, Any]] = []

    def send(self, to_address: str, message: RenderedMessage) -> ConnectorResult:
        injected = self._record_call("send")
        if injected:
            return injected

        with self._lock:
            message_id = f"mock-{len(self.outbox) + 1}"
            self.outbox.append({
                "message_id": message_id,
                "to": to_address,
                "subject": message.subject,
                "text": message.text,
                "html": message.html,
            })

        logger.info(f"Mock sent '{message.subject}' to {to_address}")
        return ConnectorResult(True, f"Sent email to {to_address}", {"message_id": message_id})

    def sent_to(self, to_address: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [m for m in self.outbox if m["to"] == to_address]

    def get_mock_state(self) -> Dict[str, Any]:
        state = super().get_mock_state()
        with self._lock:
            state["outbox"] = list(self.outbox)
        return state
