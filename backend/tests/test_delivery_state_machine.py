from __future__ import annotations

import unittest

from _harness import FulfilmentTestCase
from tryon.errors import InvalidCommand, InvalidTransition, NotFound
from tryon.services import commands, delivery_service, order_service
from tryon.services.delivery_service import DeliveryStatus
from tryon.services.order_service import OrderStatus


class DeliveryStateMachineTestCase(FulfilmentTestCase):
    def setUp(self):
        super().setUp()
        self.buyer_id = self.make_user("buyer")
        self.worker_id = self.make_user("delivery")
        self.order = order_service.create_order(self.buyer_id, 3, 1, 2, "60")
        self.delivery_id = int(self.order.delivery.id)

    def _assign(self):
        order_service.assign_delivery(self.order.id, self.worker_id)

    def _order_step(self, *cmds):
        for cmd in cmds:
            order_service.transition_order(self.order.id, cmd)

    def test_assigned_is_reachable_only_through_assignment(self):
        with self.assertRaises(InvalidTransition):
            delivery_service.update_delivery_status_to(self.delivery_id, DeliveryStatus.ASSIGNED)
        self.assertEqual(
            delivery_service.get_delivery(self.delivery_id).status, DeliveryStatus.PENDING_PICKUP
        )

    def test_unassigned_delivery_cannot_be_picked_up(self):
        with self.assertRaises(InvalidTransition):
            delivery_service.update_delivery_status(self.delivery_id, commands.DeliveryPickedUp())

    def test_walk_to_completed_alongside_the_order(self):
        self._assign()
        with self.assertRaises(InvalidTransition):
            delivery_service.update_delivery_status(self.delivery_id, commands.DeliveryPickedUp())

        self._order_step(commands.PickUp(pickup_photo_urls=("https://cdn.example/p1.jpg",)))
        delivery = delivery_service.update_delivery_status(
            self.delivery_id, commands.DeliveryInTransit(), actor_id=self.worker_id
        )
        self.assertEqual(delivery.status, DeliveryStatus.IN_TRANSIT)
        with self.assertRaises(InvalidTransition):
            delivery_service.update_delivery_status(self.delivery_id, commands.DeliveryDelivered())

        self._order_step(commands.StartTransit(), commands.DeliverForTryOn())
        with self.assertRaises(InvalidTransition):
            delivery_service.update_delivery_status(self.delivery_id, commands.DeliveryCompleted())

        self._order_step(commands.ConfirmFit(), commands.Complete())
        delivery = delivery_service.get_delivery(self.delivery_id)
        self.assertEqual(delivery.status, DeliveryStatus.COMPLETED)
        self.assertIsNotNone(delivery.picked_at)
        self.assertIsNotNone(delivery.delivered_at)
        self.assertEqual(delivery.photo_urls("pickup"), ["https://cdn.example/p1.jpg"])

    def test_steps_cannot_be_skipped_or_reversed(self):
        self._assign()
        self._order_step(commands.PickUp())
        with self.assertRaises(InvalidTransition):
            delivery_service.update_delivery_status_to(self.delivery_id, "DELIVERED")
        delivery_service.update_delivery_status_to(self.delivery_id, "IN_TRANSIT")
        with self.assertRaises(InvalidTransition):
            delivery_service.update_delivery_status_to(self.delivery_id, "PICKED_UP")
        with self.assertRaises(InvalidTransition):
            delivery_service.update_delivery_status_to(self.delivery_id, "COMPLETED")
        self.assertEqual(delivery_service.get_delivery(self.delivery_id).status, DeliveryStatus.IN_TRANSIT)

    def test_completed_is_terminal(self):
        self._assign()
        self._order_step(
            commands.PickUp(),
            commands.StartTransit(),
            commands.DeliverForTryOn(),
            commands.ConfirmFit(),
            commands.Complete(),
        )
        for target in ("PICKED_UP", "IN_TRANSIT", "DELIVERED", "COMPLETED"):
            with self.subTest(target=target):
                with self.assertRaises(InvalidTransition):
                    delivery_service.update_delivery_status_to(self.delivery_id, target)

    def test_delivery_never_runs_ahead_of_the_order(self):
        self._assign()
        for target in ("PICKED_UP", "IN_TRANSIT", "DELIVERED", "COMPLETED"):
            with self.subTest(target=target):
                with self.assertRaises(InvalidTransition):
                    delivery_service.update_delivery_status_to(self.delivery_id, target)
        order = order_service.get_order(self.order.id)
        self.assertEqual(order.status, OrderStatus.PICKUP_ASSIGNED)
        self.assertEqual(order.delivery.status, DeliveryStatus.ASSIGNED)

    def test_worker_progress_does_not_move_the_order(self):
        self._assign()
        self._order_step(commands.PickUp())
        delivery_service.update_delivery_status_to(self.delivery_id, "IN_TRANSIT")
        self.assertEqual(order_service.get_order(self.order.id).status, OrderStatus.PICKED_UP)

        # The order catching up later leaves the delivery where it already is.
        order = order_service.transition_order(self.order.id, commands.StartTransit())
        self.assertEqual(order.status, OrderStatus.IN_TRANSIT)
        self.assertEqual(order.delivery.status, DeliveryStatus.IN_TRANSIT)

    def test_payload_is_parsed_into_command(self):
        self._assign()
        self._order_step(commands.PickUp())
        with self.assertRaises(InvalidCommand):
            delivery_service.update_delivery_status_to(self.delivery_id, "IN_TRANSIT", {"assigned_to_id": 1})
        self.assertEqual(delivery_service.get_delivery(self.delivery_id).status, DeliveryStatus.PICKED_UP)
        delivery = delivery_service.update_delivery_status_to(self.delivery_id, "in_transit", {})
        self.assertEqual(delivery.status, DeliveryStatus.IN_TRANSIT)

    def test_photos_can_be_added_outside_a_transition(self):
        delivery = delivery_service.add_pickup_photos(self.delivery_id, ["https://cdn.example/x.jpg", " "])
        self.assertEqual(delivery.photo_urls("pickup"), ["https://cdn.example/x.jpg"])
        delivery = delivery_service.add_delivery_photos(self.delivery_id, ["https://cdn.example/y.jpg"])
        self.assertEqual(delivery.photo_urls("delivery"), ["https://cdn.example/y.jpg"])
        with self.assertRaises(InvalidCommand):
            delivery_service.add_pickup_photos(self.delivery_id, [])

    def test_missing_delivery_is_not_found(self):
        with self.assertRaises(NotFound):
            delivery_service.update_delivery_status(99999, commands.DeliveryInTransit())
        with self.assertRaises(NotFound):
            delivery_service.update_delivery_status_to(99999, "ASSIGNED")
        with self.assertRaises(NotFound):
            delivery_service.add_pickup_photos(99999, ["https://cdn.example/z.jpg"])

    def test_listings_for_workers(self):
        self.assertEqual([o.id for o in delivery_service.pending_deliveries()], [self.order.id])
        self._assign()
        self.assertEqual(
            [d.id for d in delivery_service.deliveries_for_worker(self.worker_id)], [self.delivery_id]
        )


class TransitionCommandTestCase(unittest.TestCase):
    def test_order_command_from_payload(self):
        cmd = commands.parse_order_command("return_scheduled", {"status": "x", "reason": "  wrong size "})
        self.assertIsInstance(cmd, commands.ScheduleReturn)
        self.assertEqual(cmd.reason, "wrong size")

    def test_photo_field_accepts_single_string(self):
        cmd = commands.parse_order_command("PICKED_UP", {"pickup_photo_urls": "https://cdn.example/1.jpg"})
        self.assertEqual(cmd.pickup_photo_urls, ("https://cdn.example/1.jpg",))

    def test_unknown_fields_are_rejected(self):
        with self.assertRaises(InvalidCommand) as ctx:
            commands.parse_order_command("IN_TRANSIT", {"buyer_id": 9, "total_amount": 1})
        self.assertEqual(ctx.exception.context.get("fields"), ["buyer_id", "total_amount"])

    def test_fields_of_other_commands_are_rejected(self):
        with self.assertRaises(InvalidCommand):
            commands.parse_order_command("VERIFIED_OK", {"reason": "fits"})

    def test_unsupported_status(self):
        for status in ("", None, "CANCELLED", "PICKUP_ASSIGNED", "NOPE"):
            with self.subTest(status=status):
                with self.assertRaises(InvalidCommand):
                    commands.parse_order_command(status, {})
        with self.assertRaises(InvalidCommand):
            commands.parse_delivery_command("ASSIGNED", {})

    def test_bad_field_types(self):
        with self.assertRaises(InvalidCommand):
            commands.parse_delivery_command("DELIVERED", {"photo_urls": [1, 2]})
        with self.assertRaises(InvalidCommand):
            commands.parse_order_command("RETURN_SCHEDULED", {"reason": 5})


if __name__ == "__main__":
    unittest.main()
