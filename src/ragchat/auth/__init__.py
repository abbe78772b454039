"""Authentication collaborators."""

from .service import Authenticator, StaticTokenAuthenticator, SupabaseAuthenticator, bearer_token

__all__ = ["Authenticator", "StaticTokenAuthenticator", "SupabaseAuthenticator", "bearer_token"]
