from __future__ import annotations

import unittest

from _harness import FulfilmentTestCase
from tryon.errors import InvalidCommand, InvalidTransition, NotFound, Unauthorized
from tryon.services import commands, order_service, rating_service


def _complete(order_id: int, worker_id: int) -> None:
    order_service.assign_delivery(order_id, worker_id)
    for cmd in (
        commands.PickUp(),
        commands.StartTransit(),
        commands.DeliverForTryOn(),
        commands.ConfirmFit(),
        commands.Complete(),
    ):
        order_service.transition_order(order_id, cmd)


class RatingServiceTestCase(FulfilmentTestCase):
    def setUp(self):
        super().setUp()
        self.buyer_id = self.make_user("buyer")
        self.seller_id = self.make_user("seller")
        self.worker_id = self.make_user("delivery")
        self.stranger_id = self.make_user("buyer")
        self.order = order_service.create_order(self.buyer_id, 4, None, None, "40", seller_id=self.seller_id)

    def test_rating_waits_for_completion(self):
        with self.assertRaises(InvalidTransition):
            rating_service.rate(self.order.id, self.buyer_id, self.seller_id, 5)
        _complete(self.order.id, self.worker_id)
        rating = rating_service.rate(self.order.id, self.buyer_id, self.seller_id, 5, "  lovely fit ")
        self.assertEqual(rating.score, 5)
        self.assertEqual(rating.comment, "lovely fit")

    def test_only_parties_rate_each_other(self):
        _complete(self.order.id, self.worker_id)
        with self.assertRaises(Unauthorized):
            rating_service.rate(self.order.id, self.stranger_id, self.seller_id, 3)
        with self.assertRaises(InvalidCommand):
            rating_service.rate(self.order.id, self.buyer_id, self.buyer_id, 3)
        with self.assertRaises(InvalidCommand):
            rating_service.rate(self.order.id, self.buyer_id, self.stranger_id, 3)
        rating_service.rate(self.order.id, self.seller_id, self.worker_id, 4)

    def test_score_range(self):
        _complete(self.order.id, self.worker_id)
        for score in (0, 6, "abc", None, 4.5, True):
            with self.subTest(score=score):
                with self.assertRaises(InvalidCommand):
                    rating_service.rate(self.order.id, self.buyer_id, self.seller_id, score)
        self.assertEqual(rating_service.ratings_for_order(self.order.id), [])

    def test_one_rating_per_party_and_order(self):
        _complete(self.order.id, self.worker_id)
        rating_service.rate(self.order.id, self.buyer_id, self.seller_id, 2)
        with self.assertRaises(InvalidTransition):
            rating_service.rate(self.order.id, self.buyer_id, self.seller_id, 5)
        self.assertEqual(len(rating_service.ratings_for_order(self.order.id)), 1)

    def test_average_per_user(self):
        _complete(self.order.id, self.worker_id)
        rating_service.rate(self.order.id, self.buyer_id, self.seller_id, 5)
        rating_service.rate(self.order.id, self.worker_id, self.seller_id, 4)
        self.assertEqual(
            rating_service.average_for_user(self.seller_id), {"average": 4.5, "total_ratings": 2}
        )
        self.assertEqual(
            rating_service.average_for_user(self.buyer_id), {"average": 0.0, "total_ratings": 0}
        )
        with self.assertRaises(NotFound):
            rating_service.ratings_for_user(99999)


class RatingsApiTestCase(FulfilmentTestCase):
    PUSH_CONTEXT = False

    def setUp(self):
        super().setUp()
        self.buyer_id = self.make_user("buyer")
        self.seller_id = self.make_user("seller")
        self.worker_id = self.make_user("delivery")
        self.stranger_id = self.make_user("buyer")
        with self.app.app_context():
            order = order_service.create_order(self.buyer_id, 4, None, None, "40", seller_id=self.seller_id)
            self.order_id = int(order.id)
            _complete(self.order_id, self.worker_id)

    def _rate(self, user_id: int, payload: dict):
        return self.client.post("/api/ratings", headers=self.auth(user_id), json=payload)

    def test_rate_and_read_back(self):
        res = self._rate(
            self.buyer_id,
            {"order_id": self.order_id, "receiver_id": self.seller_id, "score": 4, "comment": "quick"},
        )
        self.assertEqual(res.status_code, 201, res.get_data(as_text=True))
        self.assertEqual(res.get_json()["rating"]["giver_id"], self.buyer_id)

        res = self.client.get(f"/api/ratings/user/{self.seller_id}")
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual([r["score"] for r in body["items"]], [4])
        self.assertEqual(body["summary"], {"average": 4.0, "total_ratings": 1})

        res = self.client.get(f"/api/ratings/order/{self.order_id}", headers=self.auth(self.worker_id))
        self.assertEqual(len(res.get_json()["items"]), 1)
        res = self.client.get(f"/api/ratings/order/{self.order_id}", headers=self.auth(self.stranger_id))
        self.assertEqual(res.status_code, 403)

    def test_bad_requests(self):
        res = self._rate(self.buyer_id, {"order_id": self.order_id, "receiver_id": self.seller_id})
        self.assertEqual(res.status_code, 400)
        res = self._rate(self.buyer_id, {"receiver_id": self.seller_id, "score": 3})
        self.assertEqual(res.status_code, 400)
        res = self._rate(self.stranger_id, {"order_id": self.order_id, "receiver_id": self.seller_id, "score": 3})
        self.assertEqual(res.status_code, 403)
        res = self.client.post("/api/ratings", json={"order_id": self.order_id})
        self.assertEqual(res.status_code, 401)

        payload = {"order_id": self.order_id, "receiver_id": self.worker_id, "score": 5}
        self.assertEqual(self._rate(self.buyer_id, payload).status_code, 201)
        res = self._rate(self.buyer_id, payload)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "INVALID_TRANSITION")

        res = self.client.get("/api/ratings/user/99999")
        self.assertEqual(res.status_code, 404)


class AdminWalletApiTestCase(FulfilmentTestCase):
    PUSH_CONTEXT = False

    def setUp(self):
        super().setUp()
        self.admin_id = self.make_user("admin")
        self.seller_id = self.make_user("seller")

    def test_admin_reads_any_wallet(self):
        res = self.client.post(
            "/api/wallet/credit",
            headers=self.auth(self.admin_id),
            json={"user_id": self.seller_id, "amount": 15},
        )
        self.assertEqual(res.status_code, 200, res.get_data(as_text=True))

        res = self.client.get(f"/api/admin/users/{self.seller_id}/wallet", headers=self.auth(self.admin_id))
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["wallet"]["balance"], 15.0)
        self.assertEqual([t["type"] for t in body["transactions"]], ["PAYOUT"])

    def test_wallet_view_is_admin_only(self):
        res = self.client.get(f"/api/admin/users/{self.seller_id}/wallet", headers=self.auth(self.seller_id))
        self.assertEqual(res.status_code, 403)
        res = self.client.get("/api/admin/users/99999/wallet", headers=self.auth(self.admin_id))
        self.assertEqual(res.status_code, 404)
        res = self.client.get(f"/api/admin/users/{self.admin_id}/wallet", headers=self.auth(self.admin_id))
        self.assertEqual(res.get_json()["wallet"]["balance"], 0.0)


if __name__ == "__main__":
    unittest.main()
