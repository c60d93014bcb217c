"""Order Placement Transaction."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from storefront.orders import OrderService, merge_line_items
from storefront.products import ProductService
from storefront.utils.exceptions import (
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidInputError,
    NotFoundError,
    UnauthenticatedError,
)
from .helpers import make_actor, stock_of
from .transactions import write_conflict

ADDRESS = "221B Baker Street"


@pytest.fixture
def service(db, guard):
    return OrderService(db, guard=guard, max_attempts=3, retry_backoff=0)


class FlakyCollection:
    """Delegates to a real collection but fails the Nth conditional update."""

    def __init__(self, inner, fail_on_call: int, error: Exception | None = None):
        self._inner = inner
        self._fail_on_call = fail_on_call
        self._error = error or PyMongoError("connection reset")
        self.calls = 0

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def find_one_and_update(self, *args, **kwargs):
        self.calls += 1
        if self.calls == self._fail_on_call:
            raise self._error
        return await self._inner.find_one_and_update(*args, **kwargs)


# ── Line item merging ────────────────────────────────────────────


def test_merge_sums_duplicates_in_first_seen_order():
    merged = merge_line_items(
        [
            {"product_id": "b", "quantity": 1},
            {"product_id": "a", "quantity": 2},
            {"product_id": "b", "quantity": 3},
        ]
    )
    assert merged == {"b": 4, "a": 2}
    assert list(merged) == ["b", "a"]


@pytest.mark.parametrize(
    "items",
    [
        [],
        [{"product_id": "a", "quantity": 0}],
        [{"product_id": "a", "quantity": -2}],
        [{"product_id": "a", "quantity": 1.5}],
        [{"product_id": "a", "quantity": True}],
        [{"quantity": 1}],
        ["not-a-mapping"],
    ],
)
def test_merge_rejects_bad_items(items):
    with pytest.raises(InvalidInputError):
        merge_line_items(items)


# ── Happy path ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_place_order_decrements_stock_and_snapshots_prices(
    db, service, customer, insert_product
):
    widget = await insert_product(price=19.99, stock=10)
    gadget = await insert_product(price=5.5, stock=3)

    order = await service.place_order(
        customer,
        [
            {"product_id": widget, "quantity": 2},
            {"product_id": gadget, "quantity": 3},
        ],
        ADDRESS,
    )

    assert order["status"] == "pending"
    assert order["user_id"] == customer.id
    assert order["shipping_address"] == ADDRESS
    assert order["line_items"] == [
        {"product_id": widget, "quantity": 2, "unit_price": 19.99},
        {"product_id": gadget, "quantity": 3, "unit_price": 5.5},
    ]
    assert Decimal(str(order["total_amount"])) == Decimal("56.48")
    assert await stock_of(db, widget) == 8
    assert await stock_of(db, gadget) == 0


@pytest.mark.asyncio
async def test_duplicate_lines_are_one_request(db, service, customer, insert_product):
    widget = await insert_product(price=2.0, stock=5)

    order = await service.place_order(
        customer,
        [
            {"product_id": widget, "quantity": 2},
            {"product_id": widget, "quantity": 3},
        ],
        ADDRESS,
    )

    assert order["line_items"] == [
        {"product_id": widget, "quantity": 5, "unit_price": 2.0}
    ]
    assert order["total_amount"] == 10.0
    assert await stock_of(db, widget) == 0


@pytest.mark.asyncio
async def test_merged_quantity_is_checked_against_stock(
    db, service, customer, insert_product
):
    widget = await insert_product(stock=4)

    with pytest.raises(ConflictError):
        await service.place_order(
            customer,
            [
                {"product_id": widget, "quantity": 2},
                {"product_id": widget, "quantity": 3},
            ],
            ADDRESS,
        )
    assert await stock_of(db, widget) == 4


@pytest.mark.asyncio
async def test_total_survives_later_price_edits(
    db, service, guard, customer, root, insert_product
):
    widget = await insert_product(price=12.25, stock=10)
    order = await service.place_order(
        customer, [{"product_id": widget, "quantity": 4}], ADDRESS
    )

    await ProductService(db, guard=guard).update_product(
        root, widget, {"price": Decimal("99.99")}
    )

    stored = await service.get_order(customer, order["_id"])
    line_sum = sum(
        Decimal(str(li["unit_price"])) * li["quantity"] for li in stored["line_items"]
    )
    assert Decimal(str(stored["total_amount"])) == line_sum == Decimal("49.00")


# ── Rejections leave no residue ──────────────────────────────────


@pytest.mark.asyncio
async def test_missing_product_is_not_found_and_touches_nothing(
    db, service, customer, insert_product
):
    widget = await insert_product(stock=5)

    with pytest.raises(NotFoundError):
        await service.place_order(
            customer,
            [
                {"product_id": widget, "quantity": 1},
                {"product_id": str(ObjectId()), "quantity": 1},
            ],
            ADDRESS,
        )

    assert await stock_of(db, widget) == 5
    assert await db["orders"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_insufficient_stock_on_second_item_rolls_back_first(
    db, guard, customer, insert_product
):
    widget = await insert_product(stock=5)
    gadget = await insert_product(stock=1)
    # single attempt, snapshot bypassed by a concurrent drain below
    service = OrderService(db, guard=guard, max_attempts=1)

    original_load = service._load_products

    async def load_then_drain(object_ids):
        snapshot = await original_load(object_ids)
        await db["products"].update_one(
            {"_id": ObjectId(gadget)}, {"$inc": {"stock": -1}}
        )
        return snapshot

    service._load_products = load_then_drain

    with pytest.raises(ConflictError):
        await service.place_order(
            customer,
            [
                {"product_id": widget, "quantity": 2},
                {"product_id": gadget, "quantity": 1},
            ],
            ADDRESS,
        )

    assert await stock_of(db, widget) == 5
    assert await stock_of(db, gadget) == 0
    assert await db["orders"].count_documents({}) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "items, address",
    [
        ([{"product_id": "not-an-id", "quantity": 1}], ADDRESS),
        ([{"product_id": str(ObjectId()), "quantity": 0}], ADDRESS),
        ([{"product_id": str(ObjectId()), "quantity": 1}], "   "),
        ([], ADDRESS),
    ],
)
async def test_invalid_input_is_rejected_before_any_read(
    db, service, customer, items, address
):
    with pytest.raises(InvalidInputError):
        await service.place_order(customer, items, address)
    assert await db["orders"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_placement_requires_an_actor_with_place_orders(
    db, service, delivery, insert_product
):
    widget = await insert_product(stock=5)
    with pytest.raises(UnauthenticatedError):
        await service.place_order(None, [{"product_id": widget, "quantity": 1}], ADDRESS)
    with pytest.raises(ForbiddenError):
        await service.place_order(
            delivery, [{"product_id": widget, "quantity": 1}], ADDRESS
        )
    assert await stock_of(db, widget) == 5


# ── Concurrency ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_last_unit_goes_to_exactly_one_buyer(db, guard, insert_product):
    widget = await insert_product(price=3.0, stock=1)
    buyers = [make_actor("user") for _ in range(6)]

    results = await asyncio.gather(
        *[
            OrderService(db, guard=guard).place_order(
                buyer, [{"product_id": widget, "quantity": 1}], ADDRESS
            )
            for buyer in buyers
        ],
        return_exceptions=True,
    )

    placed = [r for r in results if isinstance(r, dict)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(placed) == 1
    assert len(conflicts) == len(buyers) - 1
    assert await stock_of(db, widget) == 0
    assert await db["orders"].count_documents({}) == 1


@pytest.mark.asyncio
async def test_lost_race_is_retried(db, guard, customer, insert_product):
    widget = await insert_product(stock=2)
    service = OrderService(db, guard=guard, max_attempts=3, retry_backoff=0)
    original_load = service._load_products
    original_reserve = service._reserve_stock
    loads = []

    async def competitor_grabs_stock(object_ids):
        snapshot = await original_load(object_ids)
        loads.append(snapshot[widget]["stock"])
        if len(loads) == 1:
            # another buyer takes everything right after our first snapshot...
            await db["products"].update_one(
                {"_id": ObjectId(widget)}, {"$inc": {"stock": -2}}
            )
        return snapshot

    async def competitor_backs_off(object_ids, requested, session):
        reserved = await original_reserve(object_ids, requested, session)
        if reserved is None:
            # ...and rolls back before our next attempt
            await db["products"].update_one(
                {"_id": ObjectId(widget)}, {"$inc": {"stock": 2}}
            )
        return reserved

    service._load_products = competitor_grabs_stock
    service._reserve_stock = competitor_backs_off

    order = await service.place_order(
        customer, [{"product_id": widget, "quantity": 2}], ADDRESS
    )

    assert order["line_items"][0]["quantity"] == 2
    assert len(loads) == 2
    assert await stock_of(db, widget) == 0


@pytest.mark.asyncio
async def test_retries_are_bounded(db, guard, customer, insert_product):
    widget = await insert_product(stock=1)
    service = OrderService(db, guard=guard, max_attempts=3, retry_backoff=0)
    original_load = service._load_products
    original_reserve = service._reserve_stock
    attempts = []

    async def snapshot_then_steal(object_ids):
        snapshot = await original_load(object_ids)
        await db["products"].update_one(
            {"_id": ObjectId(widget)}, {"$inc": {"stock": -1}}
        )
        return snapshot

    async def reserve_then_return(object_ids, requested, session):
        attempts.append(1)
        reserved = await original_reserve(object_ids, requested, session)
        await db["products"].update_one(
            {"_id": ObjectId(widget)}, {"$inc": {"stock": 1}}
        )
        return reserved

    service._load_products = snapshot_then_steal
    service._reserve_stock = reserve_then_return

    with pytest.raises(ConflictError):
        await service.place_order(
            customer, [{"product_id": widget, "quantity": 1}], ADDRESS
        )

    assert len(attempts) == 3
    assert await stock_of(db, widget) == 1
    assert await db["orders"].count_documents({}) == 0


# ── Failure and isolation ────────────────────────────────────────


@pytest.mark.asyncio
async def test_persistence_failure_commits_nothing(db, service, customer, insert_product):
    widget = await insert_product(stock=5)
    gadget = await insert_product(stock=5)
    service.orders = MagicMock()
    service.orders.insert_one = AsyncMock(side_effect=PyMongoError("disk full"))

    with pytest.raises(InternalError) as exc:
        await service.place_order(
            customer,
            [
                {"product_id": widget, "quantity": 2},
                {"product_id": gadget, "quantity": 5},
            ],
            ADDRESS,
        )

    assert exc.value.status_code == 500
    assert "disk full" not in exc.value.detail
    assert await stock_of(db, widget) == 5
    assert await stock_of(db, gadget) == 5


@pytest.mark.asyncio
async def test_cancellation_commits_nothing(db, service, customer, insert_product):
    widget = await insert_product(stock=3)
    service.orders = MagicMock()
    service.orders.insert_one = AsyncMock(side_effect=asyncio.CancelledError())

    with pytest.raises(asyncio.CancelledError):
        await service.place_order(
            customer, [{"product_id": widget, "quantity": 3}], ADDRESS
        )

    assert await stock_of(db, widget) == 3


@pytest.mark.asyncio
async def test_reservation_error_midway_commits_nothing(
    db, service, customer, insert_product
):
    widget = await insert_product(stock=5)
    gadget = await insert_product(stock=5)
    service.products = FlakyCollection(db["products"], fail_on_call=2)

    with pytest.raises(InternalError):
        await service.place_order(
            customer,
            [
                {"product_id": widget, "quantity": 1},
                {"product_id": gadget, "quantity": 1},
            ],
            ADDRESS,
        )

    assert await stock_of(db, widget) == 5
    assert await stock_of(db, gadget) == 5
    assert await db["orders"].count_documents({}) == 0


@pytest.mark.asyncio
async def test_write_conflict_is_retried(db, service, customer, insert_product):
    widget = await insert_product(stock=2)
    flaky = FlakyCollection(db["products"], fail_on_call=1, error=write_conflict())
    service.products = flaky

    order = await service.place_order(
        customer, [{"product_id": widget, "quantity": 2}], ADDRESS
    )

    assert order["line_items"][0]["quantity"] == 2
    assert flaky.calls == 2
    assert await stock_of(db, widget) == 0


@pytest.mark.asyncio
async def test_failed_placement_is_invisible_to_readers_and_buyers(
    db, guard, insert_product
):
    widget = await insert_product(price=8.0, stock=1)
    first_buyer = make_actor("user")
    second_buyer = make_actor("user")
    failing = OrderService(db, guard=guard)
    competing = OrderService(db, guard=guard, retry_backoff=0.01)
    seen = {}

    async def insert_then_fail(document, session=None):
        seen["stock"] = await stock_of(db, widget)
        seen["second"] = asyncio.create_task(
            competing.place_order(
                second_buyer, [{"product_id": widget, "quantity": 1}], ADDRESS
            )
        )
        await asyncio.sleep(0)
        raise PyMongoError("primary stepped down")

    failing.orders = MagicMock()
    failing.orders.insert_one = insert_then_fail

    with pytest.raises(InternalError):
        await failing.place_order(
            first_buyer, [{"product_id": widget, "quantity": 1}], ADDRESS
        )
    second_order = await seen["second"]

    assert seen["stock"] == 1
    assert second_order["user_id"] == second_buyer.id
    assert await stock_of(db, widget) == 0
    assert await db["orders"].count_documents({}) == 1
