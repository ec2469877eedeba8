"""
auth/sessions.py -- Login, logout and bearer-token authentication.

SessionManager ties the TokenService to the UserStore: login checks the
password, issues a token and records a session row keyed by the token;
logout deletes that row. authenticate() always verifies the token itself
and additionally requires the row when require_session is on, which turns
logout into immediate revocation instead of waiting for exp.
"""

from __future__ import annotations

import logging

from auth.errors import InvalidCredentialsError, SessionNotFoundError
from auth.models import Claims
from auth.store import UserStore
from auth.tokens import TokenService, authenticate_user

logger = logging.getLogger("folio.auth")


class SessionManager:
    def __init__(self, users: UserStore, tokens: TokenService) -> None:
        self.users = users
        self.tokens = tokens

    def login(self, email: str, password: str) -> tuple[str, Claims]:
        """Verify credentials and open a session.

        Raises InvalidCredentialsError for unknown email, wrong password or
        an inactive account alike.
        """
        user = authenticate_user(self.users, email, password)
        if user is None:
            logger.warning("Failed login attempt")
            raise InvalidCredentialsError()
        token, claims = self.tokens.issue(user.id, user.email, user.username)
        self.users.create_session(token, user.id, claims.expires_at)
        logger.info("User %d logged in", user.id)
        return token, claims

    def logout(self, token: str) -> bool:
        """End the session for token. Returns False if none was open."""
        removed = self.users.delete_session(token)
        if removed:
            logger.info("Session closed")
        return removed

    def authenticate(self, token: str, require_session: bool = False) -> Claims:
        """Validate a bearer token and return its claims.

        Raises a TokenError subclass for any token failure, and
        SessionNotFoundError when require_session is set and the session
        row is gone.
        """
        claims = self.tokens.validate(token)
        if require_session and self.users.get_session(token) is None:
            raise SessionNotFoundError()
        return claims

    def purge_expired(self) -> int:
        """Delete session rows whose token has expired."""
        removed = self.users.purge_expired_sessions(self.tokens.now())
        if removed:
            logger.info("Purged %d expired sessions", removed)
        return removed
