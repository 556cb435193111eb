# floorapp/auth.py
from __future__ import annotations

import logging
from typing import Any, Protocol

from floorapp.errors import AuthError, ConnectivityError
from floorapp.models import DEFAULT_ACTOR
from floorapp.schemas import LoginResponse
from floorapp.storage import USER_KEY, BlobStore

logger = logging.getLogger(__name__)


class LoginServer(Protocol):
    async def login(self, username: str, password: str) -> LoginResponse: ...


class AuthService:
    """Online login with a cached-user fallback for offline shifts.

    The server response is cached under ``user_data``. When the server cannot
    be reached, the last user who logged in on this device is let back in if
    the username matches; the password is not checked offline.
    """

    def __init__(self, client: LoginServer, blob: BlobStore):
        self.client = client
        self.blob = blob

    async def login(self, username: str, password: str) -> dict[str, Any]:
        username = (username or "").strip()
        if not username or not password:
            raise AuthError("Username and password are required")

        try:
            resp = await self.client.login(username, password)
        except ConnectivityError:
            cached = self.get_user()
            if cached and str(cached.get("username", "")).lower() == username.lower():
                logger.info("Offline login accepted for %s", username)
                return cached
            raise AuthError("No connection and no offline session for this user") from None

        user = resp.model_dump(exclude={"message"})
        user["username"] = user.get("username") or username
        self.blob.set(USER_KEY, user)
        logger.info("User %s logged in", resp.username)
        return user

    def logout(self) -> None:
        self.blob.remove(USER_KEY)

    def get_user(self) -> dict[str, Any] | None:
        user = self.blob.get(USER_KEY)
        if isinstance(user, dict) and user.get("username"):
            return user
        return None

    def actor_name(self) -> str:
        user = self.get_user()
        return str(user["username"]) if user else DEFAULT_ACTOR


__all__ = ["AuthService", "LoginServer"]
