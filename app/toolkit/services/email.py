"""
Email service for centralized email sending.

Renders a plain text template (required) and an HTML template (optional)
with Django's template engine and hands the message to the configured
EMAIL_BACKEND.

Configuration:
    Email settings are read from Django settings:
    - EMAIL_BACKEND
    - EMAIL_HOST, EMAIL_PORT
    - DEFAULT_FROM_EMAIL

Usage:
    from toolkit.services.email import EmailService

    EmailService.send(
        to="owner@example.com",
        subject="Payment received",
        template_name="billing/email/payment_confirmation",
        context={"owner_name": "Lan"},
    )
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string

logger = logging.getLogger(__name__)


class EmailService:
    """
    Centralized email sending with template support.

    Delivery errors propagate to the caller so Celery tasks can retry
    them; template lookups fall back to text-only mail when no HTML
    variant exists.
    """

    @staticmethod
    def send(
        to: str | list[str],
        subject: str,
        template_name: str,
        context: dict,
        from_email: str | None = None,
        reply_to: str | None = None,
    ) -> bool:
        """
        Send email using a template.

        Args:
            to: Recipient email address(es)
            subject: Email subject line
            template_name: Name of template (without extension)
                           Looks for: {template_name}.txt and {template_name}.html
            context: Template context variables
            from_email: Sender email (defaults to DEFAULT_FROM_EMAIL)
            reply_to: Reply-to address

        Returns:
            True if the backend accepted the message
        """
        recipients = [to] if isinstance(to, str) else list(to)
        if not recipients:
            logger.warning("Email not sent: no recipients", extra={"template": template_name})
            return False

        text_content = render_to_string(f"{template_name}.txt", context)
        try:
            html_content = render_to_string(f"{template_name}.html", context)
        except TemplateDoesNotExist:
            html_content = None

        return EmailService.send_raw(
            to=recipients,
            subject=subject,
            body_text=text_content,
            body_html=html_content,
            from_email=from_email,
            reply_to=reply_to,
            template_name=template_name,
        )

    @staticmethod
    def send_raw(
        to: str | list[str],
        subject: str,
        body_text: str,
        body_html: str | None = None,
        from_email: str | None = None,
        reply_to: str | None = None,
        template_name: str | None = None,
    ) -> bool:
        """Send an email with pre-rendered content."""
        recipients = [to] if isinstance(to, str) else list(to)
        message = EmailMultiAlternatives(
            subject=subject,
            body=body_text,
            from_email=from_email or settings.DEFAULT_FROM_EMAIL,
            to=recipients,
            reply_to=[reply_to] if reply_to else None,
        )
        if body_html:
            message.attach_alternative(body_html, "text/html")

        sent = message.send(fail_silently=False)
        logger.info(
            "Email sent",
            extra={
                "template": template_name,
                "recipient_count": len(recipients),
                "sent": sent,
            },
        )
        return bool(sent)
