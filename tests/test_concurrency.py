"""
Tests for concurrent writers against the same balance.

These tests run real concurrent requests (asyncio.gather over separate
database sessions on a file-backed SQLite database) and verify:
  - Two orders that each fit the balance, but not together, cannot both
    succeed: exactly one is placed and the balance never goes negative
  - Many small concurrent orders debit exactly once each
  - Two staff members redeeming the same code at the same moment settle
    it exactly once
  - The cached balance still equals the ledger sum afterwards
"""

import asyncio

from sqlalchemy import select

from brewledger.models.user import User


def _order(unit_price_cents):
    return {"items": [{"name": "Cold Brew", "quantity": 1, "unit_price_cents": unit_price_cents}]}


class TestConcurrentOrders:

    async def test_only_one_of_two_oversized_orders_succeeds(self, member_client, fund):
        """Balance 100.00, two 60.00 orders at once: one 201, one 400."""
        await fund(member_client.user_id, 10000)

        responses = await asyncio.gather(
            member_client.post("/orders", json=_order(6000)),
            member_client.post("/orders", json=_order(6000)),
        )
        statuses = sorted(r.status_code for r in responses)
        assert statuses == [201, 400]

        balance = (await member_client.get("/users/me/balance")).json()
        assert balance["credits_cents"] == 4000
        assert balance["match"] is True
        assert len((await member_client.get("/orders")).json()) == 1

    async def test_many_small_orders(self, member_client, fund):
        await fund(member_client.user_id, 5000)

        responses = await asyncio.gather(
            *(member_client.post("/orders", json=_order(500)) for _ in range(8))
        )
        assert all(r.status_code == 201 for r in responses)

        balance = (await member_client.get("/users/me/balance")).json()
        assert balance["credits_cents"] == 1000
        assert balance["match"] is True

    async def test_balance_never_negative(self, member_client, fund, session_factory):
        await fund(member_client.user_id, 1000)

        responses = await asyncio.gather(
            *(member_client.post("/orders", json=_order(300)) for _ in range(5))
        )
        placed = [r for r in responses if r.status_code == 201]
        assert len(placed) == 3

        async with session_factory() as session:
            result = await session.execute(
                select(User.credits_cents).where(User.id == member_client.user_id)
            )
            assert result.scalar_one() == 100


class TestConcurrentRedemption:

    async def test_same_code_redeemed_once(
        self, member_client, staff_client, second_staff_client, fund
    ):
        """Two counters scanning the same code: one 200, one 409, one debit."""
        await fund(member_client.user_id, 5000)

        created = await member_client.post(
            "/credit-transfers", json={"recipient_phone": "+61400999999", "amount_cents": 2000}
        )
        code = created.json()["code"]

        responses = await asyncio.gather(
            staff_client.post("/credit-transfers/redeem", json={"code": code}),
            second_staff_client.post("/credit-transfers/redeem", json={"code": code}),
        )
        assert sorted(r.status_code for r in responses) == [200, 409]

        balance = (await member_client.get("/users/me/balance")).json()
        assert balance["credits_cents"] == 3000
        assert balance["match"] is True
