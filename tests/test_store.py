"""Tests for the client-side cart store."""

import asyncio

import httpx
import pytest

from storefront_cart.actions import parse_action
from storefront_cart.errors import TransportError
from storefront_cart.http_server import create_app
from storefront_cart.overlay import build_overlay, is_optimistic_id
from storefront_cart.results import Err, Ok
from storefront_cart.session import CartSession
from storefront_cart.store import CartStore, DirectTransport, EndpointTransport

VARIANT_A = "gid://shopify/ProductVariant/A"
VARIANT_B = "gid://shopify/ProductVariant/B"


def add(merchandise_id, quantity=1):
    return parse_action("LinesAdd", {"lines": [{"merchandiseId": merchandise_id, "quantity": quantity}]})


class GatedTransport:
    """Holds each send until the test releases it."""

    def __init__(self, inner, gate_after=False):
        self.inner = inner
        self.gate_after = gate_after
        self.gates: list[asyncio.Event] = []
        self.sent = []

    async def send(self, action):
        gate = asyncio.Event()
        self.gates.append(gate)
        self.sent.append(action)
        if self.gate_after:
            result = await self.inner.send(action)
            await gate.wait()
            return result
        await gate.wait()
        return await self.inner.send(action)

    async def fetch(self):
        return await self.inner.fetch()

    async def wait_for_sends(self, count):
        while len(self.sent) < count:
            await asyncio.sleep(0)


@pytest.fixture
def direct(client):
    return DirectTransport(client)


@pytest.fixture
def store(direct):
    return CartStore(direct)


@pytest.mark.asyncio
async def test_submit_adopts_response_and_revalidates(store, storefront):
    result = await store.submit(add(VARIANT_A, 2))

    assert isinstance(result, Ok)
    assert result.cart.total_quantity == 2
    assert store.cart.id == "gid://shopify/Cart/c1-1"
    assert storefront.operations == ["cartCreate", "CartQuery"]
    assert len(store.tracker) == 0


@pytest.mark.asyncio
async def test_view_tracks_quantity_invariant(store):
    await store.submit(add(VARIANT_A, 2))
    await store.submit(add(VARIANT_B, 3))

    view = store.view()

    assert view.total_quantity == sum(line.quantity for line in view.lines) == 5
    assert store.cart.total_quantity == sum(line.quantity for line in store.cart.lines)


@pytest.mark.asyncio
async def test_concurrent_adds_compose_before_settling(direct, storefront):
    gated = GatedTransport(direct)
    store = CartStore(gated)

    first = asyncio.create_task(store.submit(add(VARIANT_A, 2)))
    second = asyncio.create_task(store.submit(add(VARIANT_B, 3)))
    await gated.wait_for_sends(2)

    view = store.view()
    assert [line.merchandise.id for line in view.lines] == [VARIANT_A, VARIANT_B]
    assert all(line.is_optimistic for line in view.lines)
    assert view.total_quantity == 5
    assert view.is_loading

    gated.gates[0].set()
    await first
    gated.gates[1].set()
    await second

    view = store.view()
    assert view.total_quantity == 5
    assert not view.has_pending
    assert not any(is_optimistic_id(line.id) for line in view.lines)
    assert storefront.operations.count("cartCreate") == 1


@pytest.mark.asyncio
async def test_pending_add_on_empty_cart_is_loading_not_empty(client, storefront):
    cart_id = storefront.seed_cart()
    direct = DirectTransport(client, CartSession(cart_id))
    gated = GatedTransport(direct)
    store = CartStore(gated, cart=await client.get(CartSession(cart_id)))
    assert store.view().is_empty

    task = asyncio.create_task(store.submit(add(VARIANT_A)))
    await gated.wait_for_sends(1)
    assert store.view().is_loading

    gated.gates[0].set()
    await task
    assert not store.view().is_loading
    assert store.view().total_quantity == 1


@pytest.mark.asyncio
async def test_out_of_order_responses_converge(client, storefront):
    cart_id = storefront.seed_cart({VARIANT_A: 1})
    line_id = storefront.carts[cart_id]["lines"][0]["id"]
    direct = DirectTransport(client, CartSession(cart_id))
    gated = GatedTransport(direct, gate_after=True)
    store = CartStore(gated, cart=await client.get(CartSession(cart_id)))

    first = asyncio.create_task(
        store.submit(parse_action("LinesUpdate", {"lines": [{"id": line_id, "quantity": 4}]}))
    )
    second = asyncio.create_task(
        store.submit(parse_action("LinesUpdate", {"lines": [{"id": line_id, "quantity": 7}]}))
    )
    await gated.wait_for_sends(2)
    assert store.view().lines[0].quantity == 7

    gated.gates[1].set()
    await second
    gated.gates[0].set()
    await first

    # The backend applied 4 then 7; the older response must not win.
    assert store.cart.lines[0].quantity == 7
    view = store.view()
    assert view == build_overlay(store.cart)
    assert view.lines[0].quantity == 7


@pytest.mark.asyncio
async def test_update_to_zero_matches_remove(client, storefront):
    results = []
    for action_for in (
        lambda line_id: parse_action("LinesUpdate", {"lines": [{"id": line_id, "quantity": 0}]}),
        lambda line_id: parse_action("LinesRemove", {"lineIds": [line_id]}),
    ):
        cart_id = storefront.seed_cart({VARIANT_A: 2, VARIANT_B: 1})
        session = CartSession(cart_id)
        store = CartStore(DirectTransport(client, session), cart=await client.get(session))
        target = store.cart.lines[0].id

        await store.submit(action_for(target))
        results.append([(line.merchandise.id, line.quantity) for line in store.view().lines])

    assert results[0] == results[1] == [(VARIANT_B, 1)]


@pytest.mark.asyncio
async def test_discount_code_prepended_on_dispatch(client, storefront):
    cart_id = storefront.seed_cart({VARIANT_A: 1})
    storefront.carts[cart_id]["discount_codes"] = ["SAVE10"]
    session = CartSession(cart_id)
    store = CartStore(DirectTransport(client, session), cart=await client.get(session))
    existing = [code.code for code in store.cart.discount_codes]

    result = await store.submit(
        parse_action("DiscountCodesUpdate", {"discountCode": "WELCOME", "discountCodes": existing})
    )

    mutation = [variables for name, variables in storefront.calls if name == "cartDiscountCodesUpdate"]
    assert mutation[0]["discountCodes"] == ["WELCOME", "SAVE10"]
    assert [code.code for code in result.cart.discount_codes] == ["WELCOME", "SAVE10"]


@pytest.mark.asyncio
async def test_unknown_action_rejected_before_send(store, storefront):
    await store.submit(add(VARIANT_A))
    before = store.cart
    calls = len(storefront.calls)

    result = await store.submit_form("Bogus", {})

    assert isinstance(result, Err)
    assert result.kind == "invalid_action"
    assert len(storefront.calls) == calls
    assert store.cart is before
    assert len(store.tracker) == 0


@pytest.mark.asyncio
async def test_warning_does_not_roll_back(store, storefront):
    await store.submit(add(VARIANT_A))
    storefront.warnings_next = [{"code": "MERCHANDISE_NOT_ENOUGH_STOCK", "target": VARIANT_B, "message": "Added 2 of 5"}]

    result = await store.submit(add(VARIANT_B, 2))

    assert isinstance(result, Ok)
    assert result.warnings[0].message == "Added 2 of 5"
    assert store.cart.total_quantity == 3


@pytest.mark.asyncio
async def test_backend_error_reverts_and_surfaces(store, storefront):
    await store.submit(add(VARIANT_A))
    storefront.user_errors_next = [{"code": "INVALID", "field": ["lines"], "message": "Sold out"}]

    result = await store.submit(add(VARIANT_B))

    assert isinstance(result, Err)
    assert result.kind == "backend"
    assert result.errors[0].message == "Sold out"
    error = store.tracker.error_for(result.submission_id)
    assert error.detail == "Sold out"
    assert VARIANT_B in error.target_keys
    view = store.view()
    assert [line.merchandise.id for line in view.lines] == [VARIANT_A]


@pytest.mark.asyncio
async def test_transport_error_settles_without_revalidating(store, storefront):
    await store.submit(add(VARIANT_A))
    calls = len(storefront.calls)
    storefront.fail_next = "network"

    result = await store.submit(add(VARIANT_B))

    assert isinstance(result, Err)
    assert result.kind == "transport"
    assert len(storefront.calls) == calls
    assert len(store.tracker) == 0
    assert store.tracker.error_for(result.submission_id).kind == "transport"
    assert store.view().total_quantity == 1


@pytest.mark.asyncio
async def test_noop_is_not_submitted(store, storefront):
    result = await store.submit(parse_action("LinesRemove", {"lineIds": []}))

    assert isinstance(result, Ok)
    assert storefront.calls == []
    assert len(store.tracker) == 0


@pytest.mark.asyncio
async def test_navigation_does_not_revalidate(store, storefront):
    await store.submit(add(VARIANT_A))
    calls = len(storefront.calls)

    assert not await store.navigate("/cart", "/cart")
    assert len(storefront.calls) == calls

    await store.refresh()
    assert storefront.operations[-1] == "CartQuery"


@pytest.mark.asyncio
async def test_listeners_see_every_transition(store):
    seen = []
    unsubscribe = store.subscribe(lambda view: seen.append(view.has_pending))

    await store.submit(add(VARIANT_A))
    unsubscribe()
    await store.submit(add(VARIANT_B))

    # registered, responded, revalidated
    assert seen == [True, False, False]


@pytest.mark.asyncio
async def test_independent_carts_in_one_process(client, storefront):
    shopper_a = CartStore(DirectTransport(client))
    shopper_b = CartStore(DirectTransport(client))

    await shopper_a.submit(add(VARIANT_A, 1))
    await shopper_b.submit(add(VARIANT_B, 4))

    assert shopper_a.cart.id != shopper_b.cart.id
    assert shopper_a.view().total_quantity == 1
    assert shopper_b.view().total_quantity == 4


@pytest.mark.asyncio
async def test_end_to_end_through_http_endpoint(client, storefront):
    app = create_app(client=client)
    transport = EndpointTransport("http://testserver", transport=httpx.ASGITransport(app=app))
    store = CartStore(transport)

    try:
        added = await store.submit(add(VARIANT_A, 2))
        assert isinstance(added, Ok)
        line_id = store.cart.lines[0].id

        updated = await store.submit(parse_action("LinesUpdate", {"lines": [{"id": line_id, "quantity": 5}]}))
        assert isinstance(updated, Ok)
        assert store.cart.total_quantity == 5
        assert storefront.operations == ["cartCreate", "CartQuery", "cartLinesUpdate", "CartQuery"]

        rejected = await transport.client.post("/cart", data={"action": "Bogus"})
        assert rejected.status_code == 400
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_endpoint_transport_maps_failures(client, storefront):
    app = create_app(client=client)
    transport = EndpointTransport("http://testserver", transport=httpx.ASGITransport(app=app))
    try:
        storefront.fail_next = "http"
        with pytest.raises(TransportError):
            await transport.send(add(VARIANT_A))
    finally:
        await transport.close()


@pytest.mark.asyncio
async def test_unexpected_send_failure_still_settles(client, store, storefront):
    await client.close()

    result = await store.submit(add(VARIANT_A, 2))

    assert isinstance(result, Err)
    assert result.kind == "transport"
    assert "closed" in result.detail
    assert len(store.tracker) == 0
    assert store.tracker.error_for(result.submission_id) is not None
    view = store.view()
    assert view.is_empty
    assert view.lines == []


@pytest.mark.asyncio
async def test_failing_listener_does_not_strand_submission(store, storefront):
    def broken(view):
        raise RuntimeError("render failed")

    seen = []
    store.subscribe(broken)
    store.subscribe(lambda view: seen.append(view.total_quantity))

    result = await store.submit(add(VARIANT_A, 2))

    assert isinstance(result, Ok)
    assert storefront.operations == ["cartCreate", "CartQuery"]
    assert len(store.tracker) == 0
    assert store.view().total_quantity == 2
    # Later listeners still hear about every change.
    assert seen == [2, 2, 2]
