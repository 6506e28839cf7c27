from __future__ import annotations

import json
import unittest

from esante_db.errors import InvalidCredentials
from esante_db.schemas import PublicUser, User
from esante_db.seed import initialize_database
from esante_db.service import EsanteDatabase
from esante_db.store import CURRENT_USER, USER_TOKEN, MemoryBackend, StoreAdapter


class SessionTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.backend = MemoryBackend()
        self.db = EsanteDatabase(StoreAdapter(self.backend))
        await initialize_database(self.db.adapter)
        self.session = self.db.session

    async def test_not_logged_in_on_fresh_store(self):
        self.assertFalse(await self.session.is_logged_in())
        self.assertIsNone(await self.session.current_user())

    async def test_login_writes_token_and_public_user(self):
        result = await self.session.login("admin@esante.com", "admin123")

        self.assertTrue(result.ok)
        self.assertIsInstance(result.value, PublicUser)
        self.assertNotIsInstance(result.value, User)
        self.assertEqual(json.loads(self.backend.items[USER_TOKEN]), "1")

        current = json.loads(self.backend.items[CURRENT_USER])
        self.assertEqual(current["email"], "admin@esante.com")
        self.assertNotIn("passwordHash", current)
        self.assertNotIn("password", current)

    async def test_current_user_after_login(self):
        await self.session.login("Sophie.Laurent@esante.com", "doctor123")

        me = await self.session.current_user()

        self.assertTrue(await self.session.is_logged_in())
        self.assertEqual(me.id, "3")
        self.assertEqual(me.speciality, "Cardiologie")

    async def test_bad_password(self):
        with self.assertLogs("esante_db.session", level="INFO"):
            result = await self.session.login("admin@esante.com", "admin")

        self.assertIsInstance(result.error, InvalidCredentials)
        self.assertEqual(result.reason, "invalid_credentials")
        self.assertNotIn(USER_TOKEN, self.backend.items)

    async def test_malformed_current_user_is_ignored(self):
        await self.db.adapter.set(USER_TOKEN, "1")
        await self.db.adapter.set(CURRENT_USER, {"id": "1", "name": "X"})

        with self.assertLogs("esante_db.session", level="ERROR"):
            self.assertIsNone(await self.session.current_user())
        with self.assertLogs("esante_db.session", level="ERROR"):
            dashboard = await self.db.dashboard()
        self.assertIsNone(dashboard["current_user"])

    async def test_logout_clears_session(self):
        await self.session.login("user@esante.com", "user123")

        result = await self.session.logout()

        self.assertTrue(result.ok)
        self.assertNotIn(USER_TOKEN, self.backend.items)
        self.assertNotIn(CURRENT_USER, self.backend.items)
        self.assertIsNone(await self.session.current_user())

    async def test_logout_without_session(self):
        self.assertTrue((await self.session.logout()).ok)

    async def test_register_does_not_log_in(self):
        result = await self.session.register(
            {"name": "Léa Moreau", "email": "lea@esante.com", "password": "lea123", "role": "patient"}
        )

        self.assertTrue(result.ok)
        self.assertNotIn("password_hash", result.value.model_dump())
        self.assertFalse(await self.session.is_logged_in())
        self.assertTrue((await self.session.login("lea@esante.com", "lea123")).ok)

    async def test_register_duplicate(self):
        result = await self.session.register(
            {"name": "X", "email": "admin@esante.com", "password": "x", "role": "doctor"}
        )
        self.assertEqual(result.reason, "duplicate_email")

    async def test_update_profile_refreshes_current_user(self):
        await self.session.login("user@esante.com", "user123")

        result = await self.session.update_profile({"name": "Jean-Pierre Dupont", "date_of_birth": "1970-01-02"})

        self.assertTrue(result.ok)
        me = await self.session.current_user()
        self.assertEqual(me.name, "Jean-Pierre Dupont")
        self.assertEqual(str(me.date_of_birth), "1970-01-02")
        self.assertEqual((await self.db.users.get("2")).name, "Jean-Pierre Dupont")

    async def test_update_profile_cannot_change_role_or_password(self):
        await self.session.login("user@esante.com", "user123")

        await self.session.update_profile({"role": "doctor", "password": "hacked", "phone": "0611111111"})

        user = await self.db.users.get("2")
        self.assertEqual(user.role, "patient")
        self.assertEqual(user.phone, "0611111111")
        self.assertIsNotNone(await self.db.users.authenticate("user@esante.com", "user123"))

    async def test_update_profile_duplicate_email(self):
        await self.session.login("user@esante.com", "user123")
        result = await self.session.update_profile({"email": "admin@esante.com"})
        self.assertEqual(result.reason, "duplicate_email")
        self.assertEqual((await self.session.current_user()).email, "user@esante.com")

    async def test_update_profile_without_session(self):
        result = await self.session.update_profile({"name": "X"})
        self.assertEqual(result.reason, "not_found")

    async def test_change_password(self):
        await self.session.login("user@esante.com", "user123")

        result = await self.session.change_password("user123", "user456")

        self.assertTrue(result.ok)
        self.assertIsNone(await self.db.users.authenticate("user@esante.com", "user123"))
        self.assertIsNotNone(await self.db.users.authenticate("user@esante.com", "user456"))

    async def test_change_password_wrong_current(self):
        await self.session.login("user@esante.com", "user123")

        result = await self.session.change_password("nope", "user456")

        self.assertEqual(result.reason, "invalid_credentials")
        self.assertIsNotNone(await self.db.users.authenticate("user@esante.com", "user123"))


if __name__ == "__main__":
    unittest.main()
