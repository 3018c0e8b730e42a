from __future__ import annotations

import threading
import unittest
from decimal import Decimal

from _harness import FulfilmentTestCase
from tryon.errors import InsufficientFunds, InvalidAmount
from tryon.extensions import db
from tryon.models import Transaction, Wallet
from tryon.services import ledger_service


class WalletLedgerTestCase(FulfilmentTestCase):
    def setUp(self):
        super().setUp()
        self.user_id = self.make_user("buyer")

    def test_credit_then_debit_writes_two_rows(self):
        ledger_service.credit(self.user_id, "100")
        ledger_service.debit(self.user_id, "40")
        self.assertEqual(ledger_service.get_balance(self.user_id), Decimal("60.00"))

        rows = ledger_service.transactions_for_user(self.user_id)
        self.assertEqual(len(rows), 2)
        self.assertEqual(sorted(r.amount for r in rows), [Decimal("-40.00"), Decimal("100.00")])
        self.assertEqual({r.type for r in rows}, {"PAYOUT", "CHARGE"})

    def test_amount_is_rounded_half_up(self):
        ledger_service.credit(self.user_id, "10.005")
        self.assertEqual(ledger_service.get_balance(self.user_id), Decimal("10.01"))

    def test_invalid_amounts(self):
        for amount in (0, -1, "-0.01", "0.001", "nan", "inf", True, None, "ten"):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidAmount):
                    ledger_service.credit(self.user_id, amount)
        self.assertEqual(Transaction.query.count(), 0)

    def test_insufficient_funds_leaves_everything_untouched(self):
        ledger_service.credit(self.user_id, "25")
        with self.assertRaises(InsufficientFunds):
            ledger_service.debit(self.user_id, "25.01")
        self.assertEqual(ledger_service.get_balance(self.user_id), Decimal("25.00"))
        self.assertEqual(Transaction.query.filter_by(user_id=self.user_id).count(), 1)

    def test_debit_without_wallet_is_insufficient(self):
        with self.assertRaises(InsufficientFunds):
            ledger_service.debit(self.user_id, "1")
        self.assertEqual(Transaction.query.count(), 0)

    def test_debit_to_exactly_zero(self):
        ledger_service.credit(self.user_id, "12.50")
        ledger_service.debit(self.user_id, "12.50")
        self.assertEqual(ledger_service.get_balance(self.user_id), Decimal("0.00"))

    def test_provider_reference_is_applied_once(self):
        first = ledger_service.credit(self.user_id, "50", provider="paystack", provider_id="ref_1")
        again = ledger_service.credit(self.user_id, "50", provider="paystack", provider_id="ref_1")
        self.assertEqual(first.id, again.id)
        self.assertEqual(ledger_service.get_balance(self.user_id), Decimal("50.00"))

        # Same reference under another provider is a different event.
        ledger_service.credit(self.user_id, "5", provider="stripe", provider_id="ref_1")
        self.assertEqual(ledger_service.get_balance(self.user_id), Decimal("55.00"))

    def test_refund_adds_to_balance(self):
        ledger_service.refund(self.user_id, "7.25", order_id=None)
        self.assertEqual(ledger_service.get_balance(self.user_id), Decimal("7.25"))
        self.assertEqual(ledger_service.transactions_for_user(self.user_id)[0].type, "REFUND")

    def test_balance_matches_sum_of_rows(self):
        for amount in ("10", "20.10", "3.33"):
            ledger_service.credit(self.user_id, amount)
        ledger_service.debit(self.user_id, "5.43")
        total = sum((r.amount for r in ledger_service.transactions_for_user(self.user_id)), Decimal("0"))
        self.assertEqual(ledger_service.get_balance(self.user_id), total)

    def test_wallet_created_lazily_once(self):
        ledger_service.ensure_wallet(self.user_id)
        ledger_service.ensure_wallet(self.user_id)
        self.assertEqual(Wallet.query.filter_by(user_id=self.user_id).count(), 1)


class ConcurrentDebitTestCase(FulfilmentTestCase):
    def test_parallel_debits_never_overdraw(self):
        user_id = self.make_user("buyer")
        ledger_service.credit(user_id, "100")
        self.release_session()

        outcomes = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    ledger_service.debit(user_id, "30")
                    result = "ok"
                except InsufficientFunds:
                    result = "insufficient"
                finally:
                    db.session.remove()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        self.assertEqual(outcomes.count("ok"), 3)
        self.assertEqual(outcomes.count("insufficient"), 3)
        self.assertEqual(ledger_service.get_balance(user_id), Decimal("10.00"))
        charges = Transaction.query.filter_by(user_id=user_id, type="CHARGE").count()
        self.assertEqual(charges, 3)

    def test_parallel_replays_of_one_reference(self):
        user_id = self.make_user("seller")
        self.release_session()

        def worker():
            with self.app.app_context():
                try:
                    ledger_service.credit(user_id, "15", provider="paystack", provider_id="evt_dup")
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        self.assertEqual(Transaction.query.filter_by(provider_id="evt_dup").count(), 1)
        self.assertEqual(ledger_service.get_balance(user_id), Decimal("15.00"))


if __name__ == "__main__":
    unittest.main()
