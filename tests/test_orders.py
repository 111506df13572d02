"""
Tests for order placement and the order status lifecycle.

These tests verify:
  - Placing an order debits its total from credits in the same transaction
  - The debit is one ledger row described as "Order #<id>"
  - An order that the balance can't cover is refused and leaves nothing behind
  - Malformed lines and mismatched totals are rejected (400 invalid_order)
  - The owner and every staff account are notified of a new order, only
    once the order is committed
  - Orders are visible to their owner and to staff only
  - Status moves forward only; cancelled is reachable from any open status
  - Completed and cancelled are terminal
  - Re-sending the current status is a no-op: no write, no notification
"""

import pytest
from sqlalchemy import select

from brewledger.models.order import Order
from brewledger.services import order_service


LATTE_AND_MUFFIN = {
    "items": [
        {"name": "Latte", "quantity": 2, "unit_price_cents": 1500, "size": "large"},
        {"name": "Blueberry Muffin", "quantity": 1, "unit_price_cents": 750},
    ]
}


async def _place(ac, body=None):
    response = await ac.post("/orders", json=body or LATTE_AND_MUFFIN)
    assert response.status_code == 201, response.text
    return response.json()


async def _updated_at(session_factory, order_id):
    async with session_factory() as session:
        result = await session.execute(select(Order.updated_at).where(Order.id == order_id))
        return result.scalar_one()


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------

class TestPlaceOrder:
    """Tests for POST /orders."""

    async def test_order_debits_credits(self, member_client, fund):
        """100.00 credits minus a 37.50 order leaves 62.50 and one ledger row."""
        await fund(member_client.user_id, 10000)

        order = await _place(member_client)
        assert order["status"] == "pending"
        assert order["total_cents"] == 3750
        assert order["user_id"] == str(member_client.user_id)
        assert order["external_order_id"] is None

        me = await member_client.get("/users/me")
        assert me.json()["credits_cents"] == 6250

        rows = (await member_client.get("/users/me/transactions")).json()
        order_rows = [row for row in rows if row["type"] == "order"]
        assert len(order_rows) == 1
        assert order_rows[0]["amount_cents"] == -3750
        assert order_rows[0]["order_id"] == order["id"]
        assert order_rows[0]["description"] == f"Order #{order['id']}"

    async def test_lines_are_stored(self, member_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)
        assert order["items"][0]["name"] == "Latte"
        assert order["items"][0]["size"] == "large"
        assert order["items"][1]["quantity"] == 1

    async def test_matching_client_total_accepted(self, member_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client, {**LATTE_AND_MUFFIN, "total_cents": 3750})
        assert order["total_cents"] == 3750

    async def test_insufficient_credits(self, member_client, fund, platform, task_queue):
        """A refused order leaves no order, no ledger row and nothing to mirror."""
        await fund(member_client.user_id, 1000)

        response = await member_client.post("/orders", json=LATTE_AND_MUFFIN)
        assert response.status_code == 400
        data = response.json()
        assert data["error_type"] == "insufficient_balance"
        assert data["requested_cents"] == 3750
        assert data["available_cents"] == 1000

        assert (await member_client.get("/orders")).json() == []
        rows = (await member_client.get("/users/me/transactions")).json()
        assert len(rows) == 1
        assert (await member_client.get("/users/me")).json()["credits_cents"] == 1000

        await task_queue.drain()
        assert platform.order_creates() == []

    async def test_mismatched_total_rejected(self, member_client, fund):
        await fund(member_client.user_id, 10000)
        response = await member_client.post(
            "/orders", json={**LATTE_AND_MUFFIN, "total_cents": 100}
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_order"
        assert (await member_client.get("/users/me")).json()["credits_cents"] == 10000
        assert (await member_client.get("/orders")).json() == []

    async def test_matching_total_accepted(self, member_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client, {**LATTE_AND_MUFFIN, "total_cents": 3750})
        assert order["total_cents"] == 3750

    async def test_empty_order_rejected(self, member_client):
        response = await member_client.post("/orders", json={"items": []})
        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_order"

    @pytest.mark.parametrize(
        "line",
        [
            {"name": "Latte", "quantity": 0, "unit_price_cents": 500},
            {"name": "Latte", "quantity": -2, "unit_price_cents": 500},
            {"name": "Latte", "quantity": 101, "unit_price_cents": 500},
            {"name": "Latte", "quantity": 1, "unit_price_cents": -500},
            {"name": "   ", "quantity": 1, "unit_price_cents": 500},
        ],
    )
    async def test_malformed_line_rejected(self, member_client, fund, line):
        await fund(member_client.user_id, 10000)
        response = await member_client.post("/orders", json={"items": [line]})
        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_order"
        assert (await member_client.get("/users/me")).json()["credits_cents"] == 10000

    async def test_wrong_body_shape_is_422(self, member_client):
        response = await member_client.post("/orders", json={"items": "latte"})
        assert response.status_code == 422

    async def test_free_order_rejected(self, member_client):
        response = await member_client.post(
            "/orders",
            json={"items": [{"name": "Water", "quantity": 1, "unit_price_cents": 0}]},
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_order"


# ---------------------------------------------------------------------------
# Notifications on placement
# ---------------------------------------------------------------------------

class TestPlacementNotifications:

    async def test_owner_and_staff_notified(
        self, member_client, staff_client, admin_client, fund, notification_transport,
        task_queue,
    ):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)
        await task_queue.drain()

        placed = notification_transport.of_type("order_placed")
        assert [uid for uid, _ in placed] == [member_client.user_id]
        assert placed[0][1].data["order_id"] == order["id"]

        staff_ids = {uid for uid, _ in notification_transport.of_type("new_order")}
        assert staff_ids == {staff_client.user_id, admin_client.user_id}

    async def test_notification_failure_does_not_fail_order(
        self, member_client, fund, notification_transport
    ):
        await fund(member_client.user_id, 10000)
        notification_transport.fail = True

        await _place(member_client)
        assert (await member_client.get("/users/me")).json()["credits_cents"] == 6250

    async def test_nothing_sent_before_commit(
        self, member_client, fund, notifier, notification_transport, session_factory,
        task_queue,
    ):
        await fund(member_client.user_id, 10000)

        async with session_factory() as session:
            await order_service.create_order(
                session, member_client.user_id, LATTE_AND_MUFFIN["items"], notifier
            )
            await task_queue.drain()
            assert notification_transport.sent == []
            await session.commit()

        await task_queue.drain()
        assert len(notification_transport.of_type("order_placed")) == 1

    async def test_rolled_back_order_sends_nothing(
        self, member_client, fund, notifier, notification_transport, session_factory,
        task_queue,
    ):
        await fund(member_client.user_id, 10000)

        async with session_factory() as session:
            await order_service.create_order(
                session, member_client.user_id, LATTE_AND_MUFFIN["items"], notifier
            )
            await session.rollback()

        await task_queue.drain()
        assert notification_transport.sent == []
        assert (await member_client.get("/orders")).json() == []


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------

class TestOrderVisibility:

    async def test_owner_can_read_order(self, member_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)

        response = await member_client.get(f"/orders/{order['id']}")
        assert response.status_code == 200
        assert response.json()["id"] == order["id"]

        listing = await member_client.get("/orders")
        assert [o["id"] for o in listing.json()] == [order["id"]]

    async def test_other_member_gets_403(self, member_client, second_member_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)

        response = await second_member_client.get(f"/orders/{order['id']}")
        assert response.status_code == 403
        assert (await second_member_client.get("/orders")).json() == []

    async def test_staff_can_read_any_order(self, member_client, staff_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)

        response = await staff_client.get(f"/orders/{order['id']}")
        assert response.status_code == 200

    async def test_unknown_order_404(self, member_client):
        response = await member_client.get("/orders/9999")
        assert response.status_code == 404
        assert response.json()["error_type"] == "order_not_found"


# ---------------------------------------------------------------------------
# Status lifecycle
# ---------------------------------------------------------------------------

class TestStatusTransitions:
    """Tests for PATCH /orders/{id}/status."""

    async def test_full_forward_lifecycle(
        self, member_client, staff_client, fund, notification_transport, task_queue
    ):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)

        for status in ("processing", "preparing", "ready", "completed"):
            response = await staff_client.patch(
                f"/orders/{order['id']}/status", json={"status": status}
            )
            assert response.status_code == 200
            assert response.json()["status"] == status

        await task_queue.drain()
        updates = notification_transport.of_type("order_status")
        assert [n.data["status"] for _, n in updates] == [
            "processing", "preparing", "ready", "completed",
        ]
        assert all(uid == member_client.user_id for uid, _ in updates)

    async def test_skipping_forward_is_allowed(self, member_client, staff_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)

        response = await staff_client.patch(
            f"/orders/{order['id']}/status", json={"status": "ready"}
        )
        assert response.status_code == 200

    async def test_completion_notifies_exactly_once(
        self, member_client, staff_client, fund, notification_transport, task_queue
    ):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)

        for _ in range(2):
            response = await staff_client.patch(
                f"/orders/{order['id']}/status", json={"status": "completed"}
            )
            assert response.status_code == 200

        await task_queue.drain()
        completed = [
            n for _, n in notification_transport.of_type("order_status")
            if n.data["status"] == "completed"
        ]
        assert len(completed) == 1

    async def test_same_status_is_a_no_op(
        self, member_client, staff_client, fund, notification_transport, session_factory,
        task_queue,
    ):
        """Re-sending the current status changes nothing and notifies nobody."""
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)
        await staff_client.patch(f"/orders/{order['id']}/status", json={"status": "preparing"})
        # The background mirror also touches the row
        await task_queue.drain()
        before = await _updated_at(session_factory, order["id"])
        sent_before = len(notification_transport.of_type("order_status"))

        response = await staff_client.patch(
            f"/orders/{order['id']}/status", json={"status": "preparing"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "preparing"

        await task_queue.drain()
        assert await _updated_at(session_factory, order["id"]) == before
        assert len(notification_transport.of_type("order_status")) == sent_before

    async def test_backward_move_rejected(self, member_client, staff_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)
        await staff_client.patch(f"/orders/{order['id']}/status", json={"status": "ready"})

        response = await staff_client.patch(
            f"/orders/{order['id']}/status", json={"status": "processing"}
        )
        assert response.status_code == 409
        assert response.json()["error_type"] == "invalid_status_transition"

        current = await staff_client.get(f"/orders/{order['id']}")
        assert current.json()["status"] == "ready"

    async def test_cancel_from_open_status(self, member_client, staff_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)
        await staff_client.patch(f"/orders/{order['id']}/status", json={"status": "preparing"})

        response = await staff_client.patch(
            f"/orders/{order['id']}/status", json={"status": "cancelled"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    async def test_cancel_does_not_refund(self, member_client, staff_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)
        await staff_client.patch(f"/orders/{order['id']}/status", json={"status": "cancelled"})

        assert (await member_client.get("/users/me")).json()["credits_cents"] == 6250

    async def test_terminal_statuses_are_final(self, member_client, staff_client, fund):
        await fund(member_client.user_id, 20000)
        completed = await _place(member_client)
        cancelled = await _place(member_client)
        await staff_client.patch(f"/orders/{completed['id']}/status", json={"status": "completed"})
        await staff_client.patch(f"/orders/{cancelled['id']}/status", json={"status": "cancelled"})

        response = await staff_client.patch(
            f"/orders/{completed['id']}/status", json={"status": "cancelled"}
        )
        assert response.status_code == 409

        response = await staff_client.patch(
            f"/orders/{cancelled['id']}/status", json={"status": "ready"}
        )
        assert response.status_code == 409

    async def test_unknown_status_value_rejected(self, member_client, staff_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)

        response = await staff_client.patch(
            f"/orders/{order['id']}/status", json={"status": "teleported"}
        )
        assert response.status_code == 422

    async def test_member_cannot_change_status(self, member_client, fund):
        await fund(member_client.user_id, 10000)
        order = await _place(member_client)

        response = await member_client.patch(
            f"/orders/{order['id']}/status", json={"status": "completed"}
        )
        assert response.status_code == 403

    async def test_unknown_order_status_change(self, staff_client):
        response = await staff_client.patch("/orders/4242/status", json={"status": "ready"})
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------

class TestCanTransition:

    @pytest.mark.parametrize(
        "current,new,allowed",
        [
            ("pending", "processing", True),
            ("pending", "completed", True),
            ("preparing", "ready", True),
            ("ready", "preparing", False),
            ("processing", "pending", False),
            ("ready", "cancelled", True),
            ("pending", "cancelled", True),
            ("completed", "cancelled", False),
            ("cancelled", "pending", False),
            ("completed", "completed", False),
        ],
    )
    def test_rules(self, current, new, allowed):
        assert order_service.can_transition(current, new) is allowed


# ---------------------------------------------------------------------------
# Staff dashboard
# ---------------------------------------------------------------------------

class TestAdminOrderListing:

    async def test_staff_lists_orders_by_status(self, member_client, staff_client, fund):
        await fund(member_client.user_id, 20000)
        first = await _place(member_client)
        second = await _place(member_client)
        await staff_client.patch(f"/orders/{first['id']}/status", json={"status": "ready"})

        response = await staff_client.get("/admin/orders", params={"status": "ready"})
        assert response.status_code == 200
        assert [o["id"] for o in response.json()] == [first["id"]]

        everything = await staff_client.get("/admin/orders")
        assert {o["id"] for o in everything.json()} == {first["id"], second["id"]}

    async def test_member_cannot_list_all_orders(self, member_client):
        response = await member_client.get("/admin/orders")
        assert response.status_code == 403
