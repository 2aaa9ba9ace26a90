"""
Tests for EmailService.
"""

import pytest

from toolkit.services import EmailService

CONFIRMATION_CONTEXT = {
    "owner_name": "Lan Nguyen",
    "pet_name": "Mochi",
    "invoice_number": "INV-20261019-00000A",
    "amount": "200,000 VND",
    "payment_method": "Cash",
    "transaction_id": "",
    "payment_date": "19/10/2026 10:00",
}


class TestEmailService:
    def test_send_renders_text_template(self, mailoutbox, settings):
        """Should render the .txt template and send without HTML."""
        settings.DEFAULT_FROM_EMAIL = "billing@clinic.example.com"

        sent = EmailService.send(
            to="lan@example.com",
            subject="Payment received",
            template_name="billing/email/payment_confirmation",
            context=CONFIRMATION_CONTEXT,
        )

        assert sent is True
        assert len(mailoutbox) == 1
        message = mailoutbox[0]
        assert message.to == ["lan@example.com"]
        assert message.from_email == "billing@clinic.example.com"
        assert "Dear Lan Nguyen" in message.body
        assert "200,000 VND" in message.body
        assert "Transaction ID" not in message.body
        assert message.alternatives == []

    def test_send_without_recipients(self, mailoutbox):
        """Should skip sending when the recipient list is empty."""
        sent = EmailService.send(
            to=[],
            subject="Payment received",
            template_name="billing/email/payment_confirmation",
            context=CONFIRMATION_CONTEXT,
        )

        assert sent is False
        assert mailoutbox == []

    def test_send_raw_attaches_html(self, mailoutbox):
        """Should attach the HTML body as an alternative."""
        EmailService.send_raw(
            to=["a@example.com", "b@example.com"],
            subject="Hello",
            body_text="plain",
            body_html="<p>rich</p>",
            reply_to="desk@clinic.example.com",
        )

        message = mailoutbox[0]
        assert message.to == ["a@example.com", "b@example.com"]
        assert message.reply_to == ["desk@clinic.example.com"]
        assert message.alternatives[0][0] == "<p>rich</p>"

    def test_backend_errors_propagate(self, mocker):
        """Should let delivery errors reach the caller for retry."""
        mocker.patch(
            "toolkit.services.email.EmailMultiAlternatives.send",
            side_effect=OSError("smtp down"),
        )

        with pytest.raises(OSError):
            EmailService.send_raw(to="a@example.com", subject="x", body_text="y")
