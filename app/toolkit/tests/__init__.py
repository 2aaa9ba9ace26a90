"""
Tests for toolkit app.

This package contains test modules for:
- test_email.py: EmailService tests

Usage:
    pytest app/toolkit/tests/
"""
