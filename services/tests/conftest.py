"""
Top-level test configuration for opphub.
"""

import os

# Ensure test-friendly defaults
os.environ.setdefault("OPPHUB_JSON_LOGS", "false")
os.environ.setdefault("OPPHUB_LOG_LEVEL", "DEBUG")
