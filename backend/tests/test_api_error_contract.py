from __future__ import annotations

import unittest
from unittest.mock import patch

from _harness import FulfilmentTestCase


class ApiErrorContractTestCase(FulfilmentTestCase):
    PUSH_CONTEXT = False

    def _assert_shape(self, res, status: int):
        self.assertEqual(res.status_code, status)
        self.assertTrue(res.is_json)
        body = res.get_json(force=True) or {}
        self.assertFalse(bool(body.get("ok", True)))
        self.assertTrue(str(body.get("error") or "").strip())
        self.assertTrue(str(body.get("message") or "").strip())
        self.assertEqual(int(body.get("status") or 0), status)
        self.assertTrue(str(body.get("trace_id") or "").strip())
        return body

    def test_unknown_api_route_returns_json_error_shape(self):
        self._assert_shape(self.client.get("/api/does-not-exist"), 404)

    def test_domain_error_carries_code_and_context(self):
        admin_id = self.make_user("admin")
        res = self.client.get("/api/orders/777", headers=self.auth(admin_id))
        body = self._assert_shape(res, 404)
        self.assertEqual(body["error"], "NOT_FOUND")
        self.assertEqual(body["context"], {"order_id": 777})

    def test_expired_or_forged_token_is_unauthenticated(self):
        res = self.client.get("/api/wallet", headers={"Authorization": "Bearer not-a-jwt"})
        self._assert_shape(res, 401)

    def test_unhandled_error_is_masked(self):
        user_id = self.make_user("buyer")
        with patch("tryon.services.order_service.orders_for_buyer", side_effect=RuntimeError("boom")):
            res = self.client.get("/api/orders/mine", headers=self.auth(user_id))
        body = self._assert_shape(res, 500)
        self.assertNotIn("boom", body["message"])


class RequestIdHeadersTestCase(FulfilmentTestCase):
    PUSH_CONTEXT = False

    def test_generates_request_id_when_missing(self):
        res = self.client.get("/api/health")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["db"], "ok")
        rid = (res.headers.get("X-Request-ID") or "").strip()
        self.assertTrue(rid)

    def test_echoes_request_id_when_provided(self):
        incoming = "rid-test-123"
        res = self.client.get("/api/health", headers={"X-Request-ID": incoming})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.headers.get("X-Request-ID"), incoming)

    def test_error_payload_includes_trace_id(self):
        res = self.client.post("/api/orders", json={"listing_id": 1, "total_amount": 5})
        self.assertEqual(res.status_code, 401)
        body = res.get_json(force=True)
        self.assertIsInstance(body, dict)
        self.assertEqual((body.get("trace_id") or "").strip(), (res.headers.get("X-Request-ID") or "").strip())

    def test_transitions_record_request_id(self):
        buyer_id = self.make_user("buyer")
        res = self.client.post(
            "/api/orders",
            headers={**self.auth(buyer_id), "X-Request-ID": "rid-order-1"},
            json={"listing_id": 1, "total_amount": 5},
        )
        oid = res.get_json()["order"]["id"]
        res = self.client.get(f"/api/orders/{oid}/transitions", headers=self.auth(buyer_id))
        self.assertEqual(res.get_json()["items"][0]["request_id"], "rid-order-1")


if __name__ == "__main__":
    unittest.main()
