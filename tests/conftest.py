# ===============================================================================
# PYTEST CONFIGURATION
# ===============================================================================
"""
Global test configuration.

Test Structure:
- tests/ mirrors apps/ structure for app-specific tests
- Run AFIP tests: pytest tests/billing/afip/
- Run API tests: pytest tests/api/
"""

import os

import django


def pytest_configure():
    """Configure Django settings for pytest"""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.test")

    django.setup()
