from __future__ import annotations

import unittest

from _harness import FulfilmentTestCase
from tryon.extensions import db
from tryon.models import User
from tryon.utils.jwt_utils import user_id_from_token


class CliCommandsTestCase(FulfilmentTestCase):
    PUSH_CONTEXT = False

    def test_create_user_then_change_role(self):
        runner = self.app.test_cli_runner()
        result = runner.invoke(args=["create-user", "--email", "Rider@Example.test", "--role", "delivery"])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("role=delivery", result.output)

        result = runner.invoke(args=["create-user", "--email", "rider@example.test", "--role", "admin"])
        self.assertEqual(result.exit_code, 0, result.output)
        with self.app.app_context():
            users = User.query.filter_by(email="rider@example.test").all()
            self.assertEqual([u.role for u in users], ["admin"])
            db.session.remove()

    def test_issue_token(self):
        uid = self.make_user("seller")
        runner = self.app.test_cli_runner()
        result = runner.invoke(args=["issue-token", str(uid)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(user_id_from_token(result.output.strip()), uid)

        result = runner.invoke(args=["issue-token", "99999"])
        self.assertNotEqual(result.exit_code, 0)


if __name__ == "__main__":
    unittest.main()
