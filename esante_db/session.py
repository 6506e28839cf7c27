"""
esante_db/session.py

The active session lives in two store keys:
- userToken: id of the logged-in user
- currentUser: public view of that user (no password hash)

SessionContext is the only code that reads or writes them.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from esante_db.errors import EntityNotFound, InvalidCredentials, Outcome
from esante_db.repository import UserRepository, as_dict
from esante_db.schemas import PublicUser, User, to_stored_keys
from esante_db.store import CURRENT_USER, USER_TOKEN, USERS, StoreAdapter
from esante_db.security import verify_password

logger = logging.getLogger(__name__)

# profile fields a user may change on their own account
PROFILE_KEYS = {"name", "email", "phone", "speciality", "address", "dateOfBirth"}


class SessionContext:
    def __init__(self, adapter: StoreAdapter, users: UserRepository) -> None:
        self.adapter = adapter
        self.users = users

    async def _remember(self, user: PublicUser) -> Outcome[PublicUser]:
        token = await self.adapter.set(USER_TOKEN, user.id)
        if not token.ok:
            return Outcome.failure(token.error)
        saved = await self.adapter.set(CURRENT_USER, user.to_document())
        if not saved.ok:
            return Outcome.failure(saved.error)
        return Outcome.success(user)

    async def login(self, email: str, password: str) -> Outcome[PublicUser]:
        user = await self.users.authenticate(email, password)
        if user is None:
            logger.info("Failed login for %s", email)
            return Outcome.failure(InvalidCredentials("Email ou mot de passe incorrect"))
        return await self._remember(user.public())

    async def logout(self) -> Outcome[None]:
        token = await self.adapter.remove(USER_TOKEN)
        current = await self.adapter.remove(CURRENT_USER)
        if not token.ok:
            return token
        return current

    async def is_logged_in(self) -> bool:
        return bool(await self.adapter.get(USER_TOKEN, default=None))

    async def current_user(self) -> Optional[PublicUser]:
        if not await self.is_logged_in():
            return None
        doc = await self.adapter.get(CURRENT_USER, default=None)
        if not isinstance(doc, dict):
            return None
        try:
            return PublicUser.model_validate(doc)
        except ValidationError as e:
            logger.error("Ignoring malformed currentUser: %s", e)
            return None

    async def register(self, data: Any) -> Outcome[PublicUser]:
        """Create an account. Does not log the new user in."""
        created = await self.users.register(data)
        if not created.ok:
            return Outcome.failure(created.error)
        return Outcome.success(created.value.public())

    async def update_profile(self, changes: Any) -> Outcome[PublicUser]:
        me = await self.current_user()
        if me is None:
            return Outcome.failure(EntityNotFound(USERS, "<no session>"))
        changes = to_stored_keys(User, as_dict(changes))
        changes = {k: v for k, v in changes.items() if k in PROFILE_KEYS}
        updated = await self.users.update(me.id, changes)
        if not updated.ok:
            return Outcome.failure(updated.error)
        return await self._remember(updated.value.public())

    async def change_password(self, current_password: str, new_password: str) -> Outcome[PublicUser]:
        me = await self.current_user()
        if me is None:
            return Outcome.failure(EntityNotFound(USERS, "<no session>"))
        user = await self.users.get(me.id)
        if user is None:
            return Outcome.failure(EntityNotFound(USERS, me.id))
        if not verify_password(current_password, user.password_hash):
            return Outcome.failure(InvalidCredentials("Mot de passe actuel incorrect"))
        updated = await self.users.set_password(user.id, new_password)
        if not updated.ok:
            return Outcome.failure(updated.error)
        return await self._remember(updated.value.public())
