"""
Shared services for the domain apps.

Usage:
    from toolkit.services import EmailService

    EmailService.send(to=..., subject=..., template_name=..., context=...)
"""

from toolkit.services.email import EmailService

__all__ = ["EmailService"]
