# ===============================================================================
# PYTEST CONFIGURATION FOR THE E-INVOICE PLATFORM
# ===============================================================================
"""
Global test configuration.

Test Structure:
- tests/ mirrors apps/ structure for app-specific tests
- tests/factories/ holds plain factory helpers shared across apps

Test Discovery:
- Run e-Invoice tests: pytest tests/einvoice/
- Run all tests: pytest tests/
"""

import os

import django


def pytest_configure():
    """Configure Django settings for pytest"""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.test")

    # Configure Django
    django.setup()
