"""
content/profiles.py -- Account sign-up / sign-in and public user profiles.

register() and login() return the public user view together with a freshly
issued bearer token. Profile edits and password changes authenticate the
token first and only ever act on the caller's own account.

Layer rule: content/ may import from every other package.
"""

from __future__ import annotations

import logging
from typing import Optional

from core.errors import Forbidden, NotFound
from core.service import ServiceContext

logger = logging.getLogger("threadboard.content")


class ProfileService:
    def __init__(self, ctx: ServiceContext) -> None:
        self.ctx = ctx

    def _session(self, user) -> dict:
        return {"user": user.to_dict(), "token": self.ctx.tokens.issue(user.id)}

    def register(self, username: str, password: str) -> dict:
        return self._session(self.ctx.credentials.register(username, password))

    def login(self, username: str, password: str) -> dict:
        return self._session(self.ctx.credentials.login(username, password))

    def get_profile(self, user_id: str) -> dict:
        return self.ctx.credentials.get_user(user_id).to_dict()

    def get_profile_by_username(self, username: str) -> dict:
        user = self.ctx.credentials.get_by_username(username)
        if user is None:
            raise NotFound("User not found.")
        return user.to_dict()

    def update_profile(
        self,
        bearer: Optional[str],
        user_id: str,
        image: Optional[str] = None,
        description: Optional[str] = None,
    ) -> dict:
        """Change image and/or description. Only the profile owner may do this."""
        caller = self.ctx.auth.require(bearer)
        if caller != user_id:
            raise Forbidden("You can only edit your own profile.")
        user = self.ctx.credentials.update_profile(user_id, image=image, description=description)
        logger.info("Profile %s updated", user.username)
        return user.to_dict()

    def change_password(self, bearer: Optional[str], old_password: str, new_password: str) -> dict:
        caller = self.ctx.auth.require(bearer)
        return self.ctx.credentials.change_password(caller, old_password, new_password).to_dict()
