#!/usr/bin/env python3
"""
Out-of-band abuse notifications for permanent bans.

Notifications are dispatched in the background after the ban decision is
final. Delivery failures raise NotificationFailure to the dispatcher,
which logs them; they never reach the request path.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, List, Optional

from .exceptions import NotificationFailure


BAN_NOTICE_SUBJECT = "URGENT: Permanent Ban - Security Violation"

BAN_NOTICE_TEMPLATE = """ATTENTION: SECURITY VIOLATION DETECTED

The address {identity} has been permanently banned from accessing our
services due to suspicious activity detected by our security system.

Violations detected:
{violations}

If you believe this is an error, please contact our security team.

Request details:
- Method: {method}
- URL: {url}
- Timestamp: {timestamp}
- User Agent: {user_agent}
"""


def build_ban_notice(record: Dict) -> str:
    """Render the notification body for an attack record."""
    return BAN_NOTICE_TEMPLATE.format(
        identity=record.get('identity', 'unknown'),
        violations='\n'.join(f"- {detector}" for detector in record.get('detector_ids', [])),
        method=record.get('method', ''),
        url=record.get('url', ''),
        timestamp=record.get('timestamp', ''),
        user_agent=record.get('user_agent') or 'Unknown',
    )


class AbuseNotifier:
    """Notification interface."""

    def notify_ban(self, record: Dict) -> None:
        raise NotImplementedError


class LoggingNotifier(AbuseNotifier):
    """Writes the notice to the log instead of sending it."""

    def __init__(self, recipient: str = 'abuse@example.com'):
        self.recipient = recipient
        self.logger = logging.getLogger(__name__)

    def notify_ban(self, record: Dict) -> None:
        self.logger.info(
            f"Would send ban notification to {self.recipient} "
            f"for {record.get('identity', 'unknown')[:45]}: {BAN_NOTICE_SUBJECT}"
        )
        self.logger.debug(build_ban_notice(record))


class SmtpNotifier(AbuseNotifier):
    """Sends the notice through an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        sender: str = 'security@localhost',
        recipients: Optional[List[str]] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        """
        Initialize SMTP notifier.

        Args:
            host: SMTP relay host
            port: SMTP relay port
            sender: From address
            recipients: Abuse desk addresses
            username: Optional login user
            password: Optional login password
            use_tls: Issue STARTTLS before login
            timeout: Socket timeout in seconds

        Raises:
            ValueError: If host or recipients are missing
        """
        if not host:
            raise ValueError("SMTP host is required")
        if not recipients:
            raise ValueError("At least one notification recipient is required")

        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = list(recipients)
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def notify_ban(self, record: Dict) -> None:
        msg = MIMEMultipart()
        msg['From'] = self.sender
        msg['To'] = ', '.join(self.recipients)
        msg['Subject'] = BAN_NOTICE_SUBJECT
        msg.attach(MIMEText(build_ban_notice(record), 'plain', 'utf-8'))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationFailure(f"Failed to send ban notification: {e}")

        self.logger.info(
            f"Ban notification sent for {record.get('identity', 'unknown')[:45]}"
        )


def create_notifier(config: Dict) -> AbuseNotifier:
    """
    Create the configured notifier.

    Raises:
        ValueError: If the backend name is unknown or SMTP settings are missing
    """
    notify_config = config.get('notifications', {}) or {}
    backend = str(notify_config.get('backend', 'log')).lower()

    if backend == 'log':
        return LoggingNotifier(recipient=notify_config.get('recipient', 'abuse@example.com'))

    if backend == 'smtp':
        smtp_config = notify_config.get('smtp', {}) or {}
        return SmtpNotifier(
            host=smtp_config.get('host', ''),
            port=int(smtp_config.get('port', 587)),
            sender=notify_config.get('sender', 'security@localhost'),
            recipients=notify_config.get('recipients', []),
            username=smtp_config.get('username') or None,
            password=smtp_config.get('password') or None,
            use_tls=bool(smtp_config.get('use_tls', True)),
            timeout=float(smtp_config.get('timeout', 10.0)),
        )

    raise ValueError(f"Unknown notification backend: {backend}")
