"""Shared pytest fixtures for storefront_cart tests."""

import json
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx
import pytest

from storefront_cart.config import Settings
from storefront_cart.models import Cart
from storefront_cart.storefront_client import StorefrontClient

API_URL = "https://shop.example.com/api/2025-01/graphql.json"
CURRENCY = "USD"

_OPERATION = re.compile(r"^\s*(?:mutation|query)\s+(\w+)\(", re.MULTILINE)


def money(amount: Any) -> dict[str, str]:
    return {"amount": str(Decimal(str(amount))), "currencyCode": CURRENCY}


class FakeStorefront:
    """
    In-memory storefront GraphQL backend for httpx.MockTransport.

    Applies cart mutations atomically, records every call, and can be told to
    fail the next call or to answer it with user errors or warnings.
    """

    def __init__(self) -> None:
        self.carts: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.prices: dict[str, Decimal] = {}
        self.valid_discount_codes = {"SAVE10", "WELCOME"}
        self.fail_next: Optional[str] = None
        self.user_errors_next: list[dict[str, Any]] = []
        self.warnings_next: list[dict[str, Any]] = []
        self._cart_seq = 0
        self._line_seq = 0
        self._gift_seq = 0
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    # -- transport -------------------------------------------------------

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def operations(self) -> list[str]:
        return [name for name, _ in self.calls]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail_next == "network":
            self.fail_next = None
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_next == "http":
            self.fail_next = None
            return httpx.Response(503, json={"errors": [{"message": "unavailable"}]})
        if self.fail_next == "garbage":
            self.fail_next = None
            return httpx.Response(200, text="<html>maintenance</html>")

        body = json.loads(request.content)
        match = _OPERATION.search(body["query"])
        assert match, "query without an operation name"
        operation = match.group(1)
        variables = body.get("variables") or {}
        self.calls.append((operation, variables))

        if operation == "CartQuery":
            cart_id = variables["cartId"]
            cart = self.cart_json(cart_id) if cart_id in self.carts else None
            return httpx.Response(200, json={"data": {"cart": cart}})

        return httpx.Response(200, json={"data": {operation: self._mutate(operation, variables)}})

    # -- cart state ------------------------------------------------------

    def _tick(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def _new_cart(self) -> str:
        self._cart_seq += 1
        cart_id = f"gid://shopify/Cart/c1-{self._cart_seq}"
        self.carts[cart_id] = {
            "lines": [],
            "discount_codes": [],
            "gift_cards": [],
            "buyer_identity": {},
            "updated_at": self._tick(),
        }
        return cart_id

    def price(self, merchandise_id: str) -> Decimal:
        return self.prices.get(merchandise_id, Decimal("10.00"))

    def _add_lines(self, state: dict[str, Any], lines: list[dict[str, Any]]) -> None:
        for line_input in lines:
            merchandise_id = line_input["merchandiseId"]
            quantity = line_input.get("quantity", 1)
            for line in state["lines"]:
                if line["merchandise_id"] == merchandise_id:
                    line["quantity"] += quantity
                    break
            else:
                self._line_seq += 1
                state["lines"].append(
                    {
                        "id": f"gid://shopify/CartLine/{self._line_seq}",
                        "merchandise_id": merchandise_id,
                        "quantity": quantity,
                    }
                )

    def _set_gift_cards(self, state: dict[str, Any], codes: list[str]) -> None:
        cards = []
        for code in codes:
            self._gift_seq += 1
            cards.append({"id": f"gid://shopify/AppliedGiftCard/{self._gift_seq}", "code": code})
        state["gift_cards"] = cards

    def _mutate(self, operation: str, variables: dict[str, Any]) -> dict[str, Any]:
        if operation == "cartCreate":
            cart_id = self._new_cart()
        else:
            cart_id = variables["cartId"]
            if cart_id not in self.carts:
                return {
                    "cart": None,
                    "userErrors": [{"code": "INVALID", "field": ["cartId"], "message": "The specified cart does not exist."}],
                    "warnings": [],
                }

        if self.user_errors_next:
            errors, self.user_errors_next = self.user_errors_next, []
            return {"cart": self.cart_json(cart_id), "userErrors": errors, "warnings": []}

        state = self.carts[cart_id]
        if operation == "cartCreate":
            cart_input = variables["input"]
            self._add_lines(state, cart_input.get("lines", []))
            state["discount_codes"] = list(cart_input.get("discountCodes", []))
            self._set_gift_cards(state, cart_input.get("giftCardCodes", []))
            state["buyer_identity"].update(cart_input.get("buyerIdentity", {}))
        elif operation == "cartLinesAdd":
            self._add_lines(state, variables["lines"])
        elif operation == "cartLinesUpdate":
            quantities = {line["id"]: line["quantity"] for line in variables["lines"]}
            for line in state["lines"]:
                if line["id"] in quantities:
                    line["quantity"] = quantities[line["id"]]
            state["lines"] = [line for line in state["lines"] if line["quantity"] > 0]
        elif operation == "cartLinesRemove":
            state["lines"] = [line for line in state["lines"] if line["id"] not in variables["lineIds"]]
        elif operation == "cartDiscountCodesUpdate":
            state["discount_codes"] = list(variables.get("discountCodes") or [])
        elif operation == "cartGiftCardCodesUpdate":
            self._set_gift_cards(state, variables["giftCardCodes"])
        elif operation == "cartGiftCardCodesRemove":
            state["gift_cards"] = [
                card for card in state["gift_cards"] if card["id"] not in variables["appliedGiftCardIds"]
            ]
        elif operation == "cartBuyerIdentityUpdate":
            state["buyer_identity"].update(variables["buyerIdentity"])
        else:
            raise AssertionError(f"unexpected operation {operation}")

        state["updated_at"] = self._tick()
        warnings, self.warnings_next = self.warnings_next, []
        return {"cart": self.cart_json(cart_id), "userErrors": [], "warnings": warnings}

    def cart_json(self, cart_id: str) -> dict[str, Any]:
        state = self.carts[cart_id]
        lines = []
        subtotal = Decimal("0")
        for line in state["lines"]:
            unit = self.price(line["merchandise_id"])
            total = unit * line["quantity"]
            subtotal += total
            lines.append(
                {
                    "id": line["id"],
                    "quantity": line["quantity"],
                    "cost": {
                        "totalAmount": money(total),
                        "amountPerQuantity": money(unit),
                        "compareAtAmountPerQuantity": None,
                    },
                    "discountAllocations": [],
                    "merchandise": {
                        "id": line["merchandise_id"],
                        "title": "Default Title",
                        "availableForSale": True,
                        "price": money(unit),
                        "image": None,
                        "selectedOptions": [],
                        "product": {
                            "handle": line["merchandise_id"].rsplit("/", 1)[-1].lower(),
                            "title": f"Product {line['merchandise_id'].rsplit('/', 1)[-1]}",
                        },
                    },
                }
            )
        identity = state["buyer_identity"]
        return {
            "id": cart_id,
            "checkoutUrl": f"https://shop.example.com/cart/c/{cart_id.rsplit('/', 1)[-1]}",
            "totalQuantity": sum(line["quantity"] for line in state["lines"]),
            "note": None,
            "updatedAt": state["updated_at"],
            "buyerIdentity": {
                "countryCode": identity.get("countryCode"),
                "email": identity.get("email"),
                "phone": identity.get("phone"),
                "customer": None,
            },
            "lines": {"nodes": lines},
            "cost": {
                "subtotalAmount": money(subtotal),
                "totalAmount": money(subtotal),
                "totalTaxAmount": money(0),
            },
            "discountCodes": [
                {"code": code, "applicable": code.upper() in self.valid_discount_codes}
                for code in state["discount_codes"]
            ],
            "appliedGiftCards": [
                {"id": card["id"], "lastCharacters": card["code"][-4:], "amountUsed": money(0)}
                for card in state["gift_cards"]
            ],
        }

    def seed_cart(self, lines: Optional[dict[str, int]] = None) -> str:
        """Create a cart directly (without recording a call) and return its ID."""
        cart_id = self._new_cart()
        self._add_lines(
            self.carts[cart_id],
            [{"merchandiseId": mid, "quantity": qty} for mid, qty in (lines or {}).items()],
        )
        return cart_id


def make_cart(lines: Optional[list[tuple[str, str, int, str]]] = None, **extra: Any) -> Cart:
    """
    Build an authoritative Cart.

    Args:
        lines: (line_id, merchandise_id, quantity, unit_price) tuples
    """
    nodes = []
    subtotal = Decimal("0")
    for line_id, merchandise_id, quantity, unit_price in lines or []:
        total = Decimal(unit_price) * quantity
        subtotal += total
        nodes.append(
            {
                "id": line_id,
                "quantity": quantity,
                "cost": {"totalAmount": money(total), "amountPerQuantity": money(unit_price)},
                "merchandise": {
                    "id": merchandise_id,
                    "title": "Default Title",
                    "price": money(unit_price),
                    "product": {"handle": "thing", "title": "Thing"},
                },
            }
        )
    data = {
        "id": "gid://shopify/Cart/c1-test",
        "checkoutUrl": "https://shop.example.com/cart/c/c1-test",
        "totalQuantity": sum(node["quantity"] for node in nodes),
        "lines": {"nodes": nodes},
        "cost": {
            "subtotalAmount": money(subtotal),
            "totalAmount": money(subtotal),
            "totalTaxAmount": money(0),
        },
        "discountCodes": [],
        "appliedGiftCards": [],
        "buyerIdentity": {},
    }
    data.update(extra)
    return Cart.model_validate(data)


@pytest.fixture
def settings() -> Settings:
    return Settings(api_url=API_URL, access_token="public-token")


@pytest.fixture
def storefront() -> FakeStorefront:
    return FakeStorefront()


@pytest.fixture
def client(settings: Settings, storefront: FakeStorefront) -> StorefrontClient:
    return StorefrontClient(settings, transport=storefront.transport)


@pytest.fixture
def empty_cart() -> Cart:
    return make_cart()


@pytest.fixture
def two_line_cart() -> Cart:
    return make_cart(
        [
            ("gid://shopify/CartLine/1", "gid://shopify/ProductVariant/A", 2, "10.00"),
            ("gid://shopify/CartLine/2", "gid://shopify/ProductVariant/B", 1, "25.50"),
        ]
    )
