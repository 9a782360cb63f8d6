"""
Development settings
"""

from .base import *  # noqa: F403

DEBUG = True
ALLOWED_HOSTS = ["localhost", "127.0.0.1", "0.0.0.0"]  # noqa: S104

# Run Django-Q tasks inline while developing
Q_CLUSTER = {
    **Q_CLUSTER_BASE,  # noqa: F405
    "workers": 1,
    "sync": True,
}

# ===============================================================================
# LOGGING CONFIGURATION
# ===============================================================================

LOGGING["loggers"]["apps"]["level"] = "DEBUG"  # noqa: F405
