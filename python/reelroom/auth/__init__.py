"""Authentication and authorization module.

This module provides:
- Token verification (Supabase JWKS verifier)
- Auth middleware for FastAPI
- Viewer identity on request state
- Chat authorization predicates (reelroom.auth.permissions)

Test-only verifiers are in tests/support/test_verifier.py.
"""

from reelroom.auth.middleware import AuthMiddleware, Viewer, get_optional_viewer, get_viewer
from reelroom.auth.verifier import SupabaseJwksVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "get_optional_viewer",
    "SupabaseJwksVerifier",
    "TokenVerifier",
]
