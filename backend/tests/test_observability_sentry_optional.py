from __future__ import annotations

import os
import unittest
from unittest.mock import patch

from flask import Flask

from tryon.utils.observability import _before_send_scrub, get_request_id, init_sentry


class SentryOptionalInitTestCase(unittest.TestCase):
    def test_sentry_init_is_noop_without_dsn(self):
        app = Flask(__name__)
        with patch.dict(os.environ, {"SENTRY_DSN": ""}, clear=False):
            init_sentry(app)

    def test_scrubs_credentials_and_codes(self):
        event = {
            "request": {
                "headers": {"Authorization": "Bearer x", "X-Tryon-Signature": "abc", "Accept": "*/*"},
                "data": {"code": "123456", "status": "PICKED_UP"},
            }
        }
        scrubbed = _before_send_scrub(event, None)
        headers = scrubbed["request"]["headers"]
        self.assertEqual(headers["Authorization"], "[REDACTED]")
        self.assertEqual(headers["X-Tryon-Signature"], "[REDACTED]")
        self.assertEqual(headers["Accept"], "*/*")
        self.assertEqual(scrubbed["request"]["data"], {"code": "[REDACTED]", "status": "PICKED_UP"})

    def test_request_id_outside_app_context(self):
        self.assertEqual(get_request_id(), "")


if __name__ == "__main__":
    unittest.main()
