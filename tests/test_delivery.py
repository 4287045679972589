from __future__ import annotations

from dataclasses import replace
from urllib.parse import parse_qs

import httpx

from lernbase_auth.delivery.messaging import (
    DeliveryService,
    HttpSmsSender,
    LoggingSender,
    build_delivery_service,
    email_verification_message,
    phone_code_message,
)


class ExplodingSender:
    def __init__(self) -> None:
        self.calls = 0

    def send(self, destination, message) -> None:
        self.calls += 1
        raise ConnectionError("smtp relay refused connection")


def test_delivery_failure_is_reported_not_raised():
    sender = ExplodingSender()
    delivery = DeliveryService(email_sender=sender, sms_sender=LoggingSender())

    sent = delivery.send_verification_message(
        "ada@example.com", email_verification_message("Ada", "tok", "http://localhost:5173")
    )

    assert sent is False
    assert sender.calls == 1


def test_disabled_channel_is_skipped():
    sender = ExplodingSender()
    delivery = DeliveryService(email_sender=LoggingSender(), sms_sender=sender, sms_enabled=False)

    assert delivery.send_verification_message("+2348031234567", phone_code_message("123456", 10)) is False
    assert sender.calls == 0


def test_messages_carry_links_and_codes():
    email = email_verification_message("Ada", "abc.def.ghi", "https://lernbase.ng/")
    sms = phone_code_message("482913", 10)

    assert "https://lernbase.ng/verify-email?token=abc.def.ghi" in email.body
    assert "Hello Ada" in email.body
    assert sms.body == "Your LernBase verification code is: 482913. Valid for 10 minutes."


def test_africastalking_request_shape():
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(201, json={"SMSMessageData": {"Recipients": []}})

    sender = HttpSmsSender(
        provider="africastalking",
        api_key="lernbase",
        api_secret="at-secret",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    sender.send("+2348031234567", phone_code_message("482913", 10))

    request = captured[0]
    assert str(request.url) == HttpSmsSender.AFRICASTALKING_URL
    assert request.headers["apiKey"] == "at-secret"
    form = parse_qs(request.content.decode())
    assert form["username"] == ["lernbase"]
    assert form["to"] == ["+2348031234567"]


def test_gateway_error_surfaces_as_failed_delivery():
    sender = HttpSmsSender(
        provider="twilio",
        api_key="AC123",
        api_secret="token",
        client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )
    delivery = DeliveryService(email_sender=LoggingSender(), sms_sender=sender)

    assert delivery.send_verification_message("+2348031234567", phone_code_message("482913", 10)) is False


def test_build_delivery_service_defaults_to_logging(settings):
    delivery = build_delivery_service(
        replace(settings, smtp_host="", sms_provider="log", enable_email_notifications=True)
    )

    sent = delivery.send_verification_message(
        "ada@example.com", email_verification_message("Ada", "tok", settings.frontend_url)
    )

    assert sent is True
