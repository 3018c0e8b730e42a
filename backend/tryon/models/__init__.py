from tryon.models.user import User
from tryon.models.order import Order
from tryon.models.delivery import Delivery, DeliveryPhoto
from tryon.models.transaction import Transaction
from tryon.models.wallet import Wallet
from tryon.models.order_transition import OrderTransition
from tryon.models.idempotency_key import IdempotencyKey
from tryon.models.reconciliation_report import ReconciliationReport
from tryon.models.rating import Rating

__all__ = [
    "User",
    "Order",
    "Delivery",
    "DeliveryPhoto",
    "Transaction",
    "Wallet",
    "OrderTransition",
    "IdempotencyKey",
    "ReconciliationReport",
    "Rating",
]
