"""Storefront GraphQL cart aggregate client."""

import logging
from typing import Any, Callable, NamedTuple, Optional

import httpx
from pydantic import ValidationError

from . import queries
from .actions import CartAction, CartActionKind
from .config import Settings
from .errors import TransportError
from .models import Cart, CartResult, CartUserError
from .session import CartSession

logger = logging.getLogger(__name__)


class CartMutation(NamedTuple):
    """How one action kind maps onto the storefront API."""

    field: str
    document: str
    variables: Callable[[Any], dict[str, Any]]
    # Input for cartCreate when the session has no cart yet; None means the
    # action needs an existing cart.
    create_input: Optional[Callable[[Any], dict[str, Any]]]


CART_MUTATIONS: dict[CartActionKind, CartMutation] = {
    CartActionKind.LINES_ADD: CartMutation(
        "cartLinesAdd",
        queries.CART_LINES_ADD_MUTATION,
        lambda action: {"lines": action.backend_lines()},
        lambda action: {"lines": action.backend_lines()},
    ),
    CartActionKind.LINES_UPDATE: CartMutation(
        "cartLinesUpdate",
        queries.CART_LINES_UPDATE_MUTATION,
        lambda action: {"lines": [line.to_wire() for line in action.lines]},
        None,
    ),
    CartActionKind.LINES_REMOVE: CartMutation(
        "cartLinesRemove",
        queries.CART_LINES_REMOVE_MUTATION,
        lambda action: {"lineIds": list(action.line_ids)},
        None,
    ),
    CartActionKind.DISCOUNT_CODES_UPDATE: CartMutation(
        "cartDiscountCodesUpdate",
        queries.CART_DISCOUNT_CODES_UPDATE_MUTATION,
        lambda action: {"discountCodes": action.codes()},
        lambda action: {"discountCodes": action.codes()},
    ),
    CartActionKind.GIFT_CARD_CODES_UPDATE: CartMutation(
        "cartGiftCardCodesUpdate",
        queries.CART_GIFT_CARD_CODES_UPDATE_MUTATION,
        lambda action: {"giftCardCodes": action.codes()},
        lambda action: {"giftCardCodes": action.codes()},
    ),
    CartActionKind.GIFT_CARD_CODES_REMOVE: CartMutation(
        "cartGiftCardCodesRemove",
        queries.CART_GIFT_CARD_CODES_REMOVE_MUTATION,
        lambda action: {"appliedGiftCardIds": list(action.gift_card_codes)},
        None,
    ),
    CartActionKind.BUYER_IDENTITY_UPDATE: CartMutation(
        "cartBuyerIdentityUpdate",
        queries.CART_BUYER_IDENTITY_UPDATE_MUTATION,
        lambda action: {"buyerIdentity": action.backend_identity()},
        lambda action: {"buyerIdentity": action.backend_identity()},
    ),
}

CART_NOT_FOUND = "CART_NOT_FOUND"


class StorefrontClient:
    """Client for the storefront cart API."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the storefront client.

        Args:
            settings: Connection settings
            transport: Optional httpx transport (used by tests)
        """
        self.settings = settings
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if settings.access_token:
            headers["X-Shopify-Storefront-Access-Token"] = settings.access_token
        self.client = httpx.AsyncClient(
            timeout=settings.timeout,
            headers=headers,
            transport=transport,
        )

    def _context(self) -> dict[str, Any]:
        context: dict[str, Any] = {}
        if self.settings.country:
            context["country"] = self.settings.country.upper()
        if self.settings.language:
            context["language"] = self.settings.language.upper()
        return context

    async def _graphql(self, document: str, variables: dict[str, Any]) -> dict[str, Any]:
        """
        POST one GraphQL operation and return its ``data``.

        Raises:
            TransportError: On network failure, non-2xx status, a non-JSON
                body, or top-level GraphQL errors
        """
        try:
            response = await self.client.post(
                self.settings.api_url,
                json={"query": document, "variables": {**variables, **self._context()}},
            )
        except httpx.HTTPError as e:
            logger.error(f"Storefront request failed: {e}")
            raise TransportError(f"Storefront unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Storefront HTTP error: {response.status_code}")
            raise TransportError(
                f"Storefront returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError("Storefront returned a non-JSON body") from e

        if not isinstance(body, dict):
            raise TransportError("Storefront returned an unexpected body")
        if body.get("errors"):
            messages = "; ".join(
                str(error.get("message", error)) if isinstance(error, dict) else str(error)
                for error in body["errors"]
            )
            logger.error(f"Storefront GraphQL errors: {messages}")
            raise TransportError(f"Storefront GraphQL errors: {messages}")

        data = body.get("data")
        if not isinstance(data, dict):
            raise TransportError("Storefront response has no data")
        return data

    @staticmethod
    def _parse_cart(data: Optional[dict[str, Any]]) -> Optional[Cart]:
        if data is None:
            return None
        try:
            return Cart.model_validate(data)
        except ValidationError as e:
            raise TransportError(f"Malformed cart in storefront response: {e}") from e

    async def get(self, session: CartSession) -> Optional[Cart]:
        """
        Fetch the authoritative cart for a session.

        Returns:
            The cart, or None if the session has no cart or it no longer exists
            (the session is cleared in that case)

        Raises:
            TransportError: If the backend cannot be reached or answers garbage
        """
        if session.cart_id is None:
            return None

        logger.info(f"=== GET CART: {session.cart_id} ===")
        data = await self._graphql(queries.CART_QUERY, {"cartId": session.cart_id})
        cart = self._parse_cart(data.get("cart"))
        if cart is None:
            logger.warning(f"Cart {session.cart_id} no longer exists")
            session.clear()
        return cart

    async def execute(self, action: CartAction, session: CartSession) -> CartResult:
        """
        Apply one mutation to the session's cart.

        Exactly one backend call is made, or none when the action needs an
        existing cart and the session has none. Creates the cart when the
        session has none and the action can start one.

        Args:
            action: Typed cart action
            session: Session holding the cart ID; updated on success

        Returns:
            The updated cart with backend errors and warnings, unmodified

        Raises:
            TransportError: If the backend cannot be reached or answers garbage
        """
        mutation = CART_MUTATIONS[action.kind]
        logger.info(f"=== {action.kind.value}: cart={session.cart_id} ===")

        if session.cart_id is None:
            if mutation.create_input is None:
                logger.warning(f"{action.kind.value} requires an existing cart")
                return CartResult(
                    errors=[
                        CartUserError(
                            code=CART_NOT_FOUND,
                            message="No cart exists for this session",
                        )
                    ]
                )
            field = "cartCreate"
            data = await self._graphql(
                queries.CART_CREATE_MUTATION, {"input": mutation.create_input(action)}
            )
        else:
            field = mutation.field
            data = await self._graphql(
                mutation.document, {"cartId": session.cart_id, **mutation.variables(action)}
            )

        payload = data.get(field)
        if not isinstance(payload, dict):
            raise TransportError(f"Storefront response has no {field} payload")

        try:
            result = CartResult(
                cart=self._parse_cart(payload.get("cart")),
                errors=payload.get("userErrors") or [],
                warnings=payload.get("warnings") or [],
            )
        except ValidationError as e:
            raise TransportError(f"Malformed {field} payload: {e}") from e

        if result.cart is not None:
            session.set_cart_id(result.cart.id)

        logger.info(
            f"{action.kind.value} done: errors={len(result.errors)}, warnings={len(result.warnings)}, "
            f"total_quantity={result.cart.total_quantity if result.cart else None}"
        )
        return result

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


# Keep the dispatch table exhaustive over the closed action set.
_missing = set(CartActionKind) - set(CART_MUTATIONS)
if _missing:
    raise RuntimeError(f"No storefront mutation for: {sorted(kind.value for kind in _missing)}")
