"""
API Dependencies package.

Cross-cutting request concerns (API key authentication).
"""

from .auth import verify_api_key, is_auth_enabled

__all__ = ["verify_api_key", "is_auth_enabled"]
