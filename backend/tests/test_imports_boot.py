from __future__ import annotations

import importlib
import unittest


class ImportsBootTestCase(unittest.TestCase):
    def test_import_create_app(self):
        module = importlib.import_module("tryon")
        create_app = getattr(module, "create_app", None)
        self.assertTrue(callable(create_app))

    def test_import_route_segments(self):
        for name in (
            "tryon.segments.segment_orders_api",
            "tryon.segments.segment_deliveries",
            "tryon.segments.segment_wallet",
            "tryon.segments.segment_payment_webhooks",
            "tryon.segments.segment_reconciliation_admin",
        ):
            with self.subTest(module=name):
                self.assertIsNotNone(importlib.import_module(name))

    def test_import_task_modules(self):
        module = importlib.import_module("tryon.tasks.ledger_tasks")
        self.assertTrue(hasattr(module, "reconcile_wallets"))


if __name__ == "__main__":
    unittest.main()
