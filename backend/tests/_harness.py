from __future__ import annotations

import os
import shutil
import tempfile
import unittest
import uuid

from tryon import create_app
from tryon.extensions import db
from tryon.models import User
from tryon.utils.jwt_utils import create_token


class FulfilmentTestCase(unittest.TestCase):
    """Fresh app on a throwaway SQLite file per test class.

    A file database is used instead of ``:memory:`` so that threads get their
    own connections to the same data.
    """

    ENV: dict = {}
    # Service tests run inside an app context; API tests drive the client.
    PUSH_CONTEXT = True

    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.mkdtemp(prefix="tryon-test-")
        db_uri = "sqlite:///" + os.path.join(cls._tmpdir, "tryon.db").replace(os.sep, "/")
        overrides = {
            "SQLALCHEMY_DATABASE_URI": db_uri,
            "DATABASE_URL": db_uri,
            "TRYON_ENV": "test",
            "SECRET_KEY": "test-secret-key-0123456789",
            "SENTRY_DSN": "",
            "OTEL_ENABLED": "",
        }
        overrides.update(cls.ENV)
        cls._prev_env = {k: os.environ.get(k) for k in overrides}
        os.environ.update(overrides)
        cls.app = create_app()
        cls.app.config.update(TESTING=True)
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.session.remove()
            db.engine.dispose()
        for key, value in cls._prev_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        shutil.rmtree(cls._tmpdir, ignore_errors=True)

    def setUp(self):
        with self.app.app_context():
            for table in reversed(db.metadata.sorted_tables):
                db.session.execute(table.delete())
            db.session.commit()
            db.session.remove()
        self._ctx = None
        if self.PUSH_CONTEXT:
            self._ctx = self.app.app_context()
            self._ctx.push()

    def tearDown(self):
        if self._ctx is not None:
            db.session.remove()
            self._ctx.pop()

    def _insert_user(self, role: str, name: str) -> int:
        u = User(
            name=name or role,
            email=f"{role}-{uuid.uuid4().hex[:10]}@example.test",
            role=role,
        )
        db.session.add(u)
        db.session.commit()
        return int(u.id)

    def make_user(self, role: str = "buyer", *, name: str = "") -> int:
        if self._ctx is not None:
            return self._insert_user(role, name)
        with self.app.app_context():
            uid = self._insert_user(role, name)
            db.session.remove()
        return uid

    def release_session(self) -> None:
        """End the test's open transaction so other connections can write."""
        db.session.commit()
        db.session.remove()

    def auth(self, user_id: int) -> dict:
        return {"Authorization": f"Bearer {create_token(int(user_id))}"}
