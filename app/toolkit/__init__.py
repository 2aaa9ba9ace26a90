"""
Toolkit - shared services used by the domain apps.

Key components:
    - services/email.py: EmailService (template rendering + mail backend)

Usage:
    from toolkit.services.email import EmailService

Note:
    This app has no models.
"""
