"""Out-of-band delivery of verification codes and links over email and SMS.

Delivery is best effort and runs after the response: flows return
``PendingDelivery`` values that the HTTP layer hands to a background task, and
a failed send is logged and reported as ``False`` instead of being raised.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Iterable, Protocol

import httpx

from ..config import Settings
from ..domain.identity import redact

logger = logging.getLogger(__name__)


class Channel(str, Enum):
    email = "email"
    sms = "sms"


@dataclass(frozen=True, slots=True)
class VerificationMessage:
    kind: str
    channel: Channel
    subject: str
    body: str


@dataclass(frozen=True, slots=True)
class PendingDelivery:
    """A message built and ready to send once the response has gone out."""

    destination: str
    message: VerificationMessage


class Sender(Protocol):
    def send(self, destination: str, message: VerificationMessage) -> None: ...


def email_verification_message(first_name: str, token: str, frontend_url: str) -> VerificationMessage:
    link = f"{frontend_url.rstrip('/')}/verify-email?token={token}"
    return VerificationMessage(
        kind="email_verification",
        channel=Channel.email,
        subject="Welcome to LernBase Nigeria - Verify Your Email",
        body=(
            f"Hello {first_name or 'there'},\n\n"
            "Please verify your email address to complete your registration:\n"
            f"{link}\n\n"
            "This link expires in 24 hours. If you did not create an account, ignore this email."
        ),
    )


def password_reset_message(first_name: str, token: str, frontend_url: str) -> VerificationMessage:
    link = f"{frontend_url.rstrip('/')}/reset-password?token={token}"
    return VerificationMessage(
        kind="password_reset",
        channel=Channel.email,
        subject="Reset Your LernBase Nigeria Password",
        body=(
            f"Hello {first_name or 'there'},\n\n"
            "We received a request to reset your password. Use the link below to choose a new one:\n"
            f"{link}\n\n"
            "This link expires in 1 hour. If you did not request a reset, ignore this email."
        ),
    )


def phone_code_message(code: str, ttl_minutes: int) -> VerificationMessage:
    return VerificationMessage(
        kind="phone_code",
        channel=Channel.sms,
        subject="",
        body=f"Your LernBase verification code is: {code}. Valid for {ttl_minutes} minutes.",
    )


class SmtpEmailSender:
    """Send plain-text mail over SMTP with STARTTLS or implicit TLS."""

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str = "",
        from_name: str = "LernBase Nigeria",
        timeout: float = 30,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._use_tls = use_tls
        self._from_email = from_email or user
        self._from_name = from_name
        self._timeout = timeout

    def send(self, destination: str, message: VerificationMessage) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{self._from_name} <{self._from_email}>"
        msg["To"] = destination
        msg.attach(MIMEText(message.body, "plain"))

        context = ssl.create_default_context()
        if self._use_tls:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                server.starttls(context=context)
                if self._user and self._password:
                    server.login(self._user, self._password)
                server.sendmail(self._from_email, destination, msg.as_string())
        else:
            with smtplib.SMTP_SSL(self._host, self._port, context=context, timeout=self._timeout) as server:
                if self._user and self._password:
                    server.login(self._user, self._password)
                server.sendmail(self._from_email, destination, msg.as_string())


class HttpSmsSender:
    """SMS gateway client for Africa's Talking or Twilio.

    ``api_key`` is the account identifier (Africa's Talking username, Twilio
    account SID) and ``api_secret`` the credential (API key, auth token).
    """

    AFRICASTALKING_URL = "https://api.africastalking.com/version1/messaging"
    TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

    def __init__(
        self,
        *,
        provider: str,
        api_key: str,
        api_secret: str = "",
        sender_id: str = "LERNBASE",
        client: httpx.Client | None = None,
    ) -> None:
        if provider not in {"africastalking", "twilio"}:
            raise ValueError(f"unsupported sms provider: {provider}")
        self._provider = provider
        self._api_key = api_key
        self._api_secret = api_secret
        self._sender_id = sender_id
        self._client = client or httpx.Client(timeout=15.0)

    def send(self, destination: str, message: VerificationMessage) -> None:
        if self._provider == "africastalking":
            response = self._client.post(
                self.AFRICASTALKING_URL,
                headers={"apiKey": self._api_secret, "Accept": "application/json"},
                data={
                    "username": self._api_key,
                    "to": destination,
                    "message": message.body,
                    "from": self._sender_id,
                },
            )
        else:
            response = self._client.post(
                self.TWILIO_URL.format(sid=self._api_key),
                auth=(self._api_key, self._api_secret),
                data={"To": destination, "From": self._sender_id, "Body": message.body},
            )
        response.raise_for_status()


class LoggingSender:
    """Development sender that only records that a message would have gone out."""

    def send(self, destination: str, message: VerificationMessage) -> None:
        logger.info(
            "dev delivery of %s via %s to %s",
            message.kind,
            message.channel.value,
            redact(destination),
        )


class DeliveryService:
    """Route verification messages to the configured channel senders."""

    def __init__(
        self,
        *,
        email_sender: Sender,
        sms_sender: Sender,
        email_enabled: bool = True,
        sms_enabled: bool = True,
    ) -> None:
        self._senders = {Channel.email: email_sender, Channel.sms: sms_sender}
        self._enabled = {Channel.email: email_enabled, Channel.sms: sms_enabled}

    def send_verification_message(self, destination: str, payload: VerificationMessage) -> bool:
        """Deliver ``payload``; return ``False`` on any failure instead of raising."""
        if not self._enabled[payload.channel]:
            logger.info("%s notifications disabled; skipped %s", payload.channel.value, payload.kind)
            return False
        try:
            self._senders[payload.channel].send(destination, payload)
        except Exception as exc:  # delivery failures never reach the caller
            logger.warning(
                "failed to deliver %s via %s to %s: %s",
                payload.kind,
                payload.channel.value,
                redact(destination),
                exc,
            )
            return False
        logger.info("delivered %s via %s to %s", payload.kind, payload.channel.value, redact(destination))
        return True

    def dispatch(self, deliveries: Iterable[PendingDelivery]) -> int:
        """Send each pending message in turn and return how many went out."""
        return sum(
            self.send_verification_message(pending.destination, pending.message) for pending in deliveries
        )


def build_delivery_service(settings: Settings) -> DeliveryService:
    """Wire senders from configuration, falling back to log output when unconfigured."""
    email_sender: Sender = LoggingSender()
    if settings.smtp_host:
        email_sender = SmtpEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_email=settings.email_from,
        )
    sms_sender: Sender = LoggingSender()
    if settings.sms_provider in {"africastalking", "twilio"} and settings.sms_api_key:
        sms_sender = HttpSmsSender(
            provider=settings.sms_provider,
            api_key=settings.sms_api_key,
            api_secret=settings.sms_api_secret,
            sender_id=settings.sms_sender_id,
        )
    return DeliveryService(
        email_sender=email_sender,
        sms_sender=sms_sender,
        email_enabled=settings.enable_email_notifications,
        sms_enabled=settings.enable_sms_notifications,
    )
