"""
Pytest configuration and shared fixtures.
"""

import os
import pytest


@pytest.fixture(autouse=True, scope="function")
def reset_auth_env():
    """
    Run every test with API_AUTH_ENABLED=false unless it sets otherwise.

    Auth settings are read per request, so restoring the environment is
    enough; no module reload is needed.
    """
    original_auth_enabled = os.environ.get("API_AUTH_ENABLED")
    original_api_key = os.environ.get("API_KEY")

    os.environ["API_AUTH_ENABLED"] = "false"

    yield

    if original_auth_enabled is not None:
        os.environ["API_AUTH_ENABLED"] = original_auth_enabled
    elif "API_AUTH_ENABLED" in os.environ:
        del os.environ["API_AUTH_ENABLED"]

    if original_api_key is not None:
        os.environ["API_KEY"] = original_api_key
    elif "API_KEY" in os.environ:
        del os.environ["API_KEY"]
