"""MCP Server exposing cart mutations as tools."""

import asyncio
import logging
from typing import Any, Optional

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from .actions import CartActionKind, parse_action
from .config import load_settings
from .errors import CartError
from .models import Cart, CartResult
from .session import CartSession
from .storefront_client import StorefrontClient

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("storefront-cart-mcp-server")

CART_URI = "storefront://cart"

# Tool name -> action kind
TOOL_ACTIONS: dict[str, CartActionKind] = {
    "cart_add_lines": CartActionKind.LINES_ADD,
    "cart_update_lines": CartActionKind.LINES_UPDATE,
    "cart_remove_lines": CartActionKind.LINES_REMOVE,
    "cart_update_discount_codes": CartActionKind.DISCOUNT_CODES_UPDATE,
    "cart_update_gift_card_codes": CartActionKind.GIFT_CARD_CODES_UPDATE,
    "cart_remove_gift_card_codes": CartActionKind.GIFT_CARD_CODES_REMOVE,
    "cart_update_buyer_identity": CartActionKind.BUYER_IDENTITY_UPDATE,
}

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

TOOLS = [
    Tool(
        name="cart_get",
        description="Get current shopping cart contents",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="cart_add_lines",
        description="Add merchandise to the cart (creates the cart if needed)",
        inputSchema={
            "type": "object",
            "properties": {
                "lines": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "merchandise_id": {"type": "string", "description": "Product variant ID"},
                            "quantity": {"type": "integer", "description": "Quantity to add", "default": 1},
                        },
                        "required": ["merchandise_id"],
                    },
                },
            },
            "required": ["lines"],
        },
    ),
    Tool(
        name="cart_update_lines",
        description="Set line quantities; quantity 0 removes the line",
        inputSchema={
            "type": "object",
            "properties": {
                "lines": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string", "description": "Cart line ID"},
                            "quantity": {"type": "integer", "description": "New quantity"},
                        },
                        "required": ["id", "quantity"],
                    },
                },
            },
            "required": ["lines"],
        },
    ),
    Tool(
        name="cart_remove_lines",
        description="Remove lines from the cart",
        inputSchema={
            "type": "object",
            "properties": {"line_ids": {**_STRING_LIST, "description": "Cart line IDs"}},
            "required": ["line_ids"],
        },
    ),
    Tool(
        name="cart_update_discount_codes",
        description="Apply a discount code, keeping the listed existing codes",
        inputSchema={
            "type": "object",
            "properties": {
                "discount_code": {"type": "string", "description": "New code to apply"},
                "discount_codes": {**_STRING_LIST, "description": "Codes to keep"},
            },
        },
    ),
    Tool(
        name="cart_update_gift_card_codes",
        description="Apply a gift card code, keeping the listed existing codes",
        inputSchema={
            "type": "object",
            "properties": {
                "gift_card_code": {"type": "string", "description": "New gift card code"},
                "gift_card_codes": {**_STRING_LIST, "description": "Codes to keep"},
            },
        },
    ),
    Tool(
        name="cart_remove_gift_card_codes",
        description="Remove applied gift cards",
        inputSchema={
            "type": "object",
            "properties": {"gift_card_codes": {**_STRING_LIST, "description": "Applied gift card IDs"}},
            "required": ["gift_card_codes"],
        },
    ),
    Tool(
        name="cart_update_buyer_identity",
        description="Update buyer email, phone or country",
        inputSchema={
            "type": "object",
            "properties": {
                "buyer_identity": {
                    "type": "object",
                    "properties": {
                        "email": {"type": "string"},
                        "phone": {"type": "string"},
                        "country_code": {"type": "string"},
                    },
                },
            },
            "required": ["buyer_identity"],
        },
    ),
]


def format_cart(cart: Optional[Cart]) -> str:
    """Render a cart as text for tool output."""
    if cart is None or not cart.lines:
        return "🛒 Cart is empty"

    result_lines = [f"🛒 Cart ({cart.total_quantity} item(s)):\n"]
    for line in cart.lines:
        merchandise = line.merchandise
        name = merchandise.product_title or merchandise.title or merchandise.id
        if merchandise.product_title and merchandise.title and merchandise.title != "Default Title":
            name = f"{merchandise.product_title} - {merchandise.title}"
        total = line.cost.total_amount
        result_lines.append(f"- {name} x{line.quantity} = {total.amount} {total.currency_code}")
        result_lines.append(f"  Line ID: {line.id}")

    if cart.discount_codes:
        codes = ", ".join(
            f"{code.code}{'' if code.applicable else ' (not applicable)'}" for code in cart.discount_codes
        )
        result_lines.append(f"\nDiscount codes: {codes}")
    if cart.applied_gift_cards:
        cards = ", ".join(f"****{card.last_characters}" for card in cart.applied_gift_cards)
        result_lines.append(f"Gift cards: {cards}")

    cost = cart.cost
    result_lines.append(f"\nSubtotal: {cost.subtotal_amount.amount} {cost.subtotal_amount.currency_code}")
    if cost.total_tax_amount is not None:
        result_lines.append(f"Tax: {cost.total_tax_amount.amount} {cost.total_tax_amount.currency_code}")
    result_lines.append(f"Total: {cost.total_amount.amount} {cost.total_amount.currency_code}")
    if cart.checkout_url:
        result_lines.append(f"Checkout: {cart.checkout_url}")
    return "\n".join(result_lines)


def format_result(result: CartResult) -> str:
    text = ["✅ Cart updated", format_cart(result.cart)]
    for warning in result.warnings:
        text.append(f"⚠️ {warning.message}")
    return "\n".join(text)


async def run_tool(
    name: str,
    arguments: Optional[dict[str, Any]],
    storefront: StorefrontClient,
    cart_session: CartSession,
) -> str:
    """
    Execute one tool against a client and session.

    Raises:
        CartError: If the action is invalid, the backend is unreachable, or
            the backend rejected the mutation
        ValueError: If the tool is unknown
    """
    if name == "cart_get":
        return format_cart(await storefront.get(cart_session))

    kind = TOOL_ACTIONS.get(name)
    if kind is None:
        raise ValueError(f"Unknown tool: {name}")

    action = parse_action(kind.value, arguments or {})
    result = await storefront.execute(action, cart_session)
    return format_result(result.raise_for_errors())


class CartTools:
    """The storefront client and cart session one MCP server works against."""

    def __init__(self, client: StorefrontClient, session: CartSession) -> None:
        self.client = client
        self.session = session

    async def list_resources(self) -> list[Resource]:
        """List available resources."""
        resources = []

        if self.session.cart_id:
            resources.append(
                Resource(
                    uri=AnyUrl(CART_URI),
                    name="Shopping Cart",
                    mimeType="application/json",
                    description="Current shopping cart contents",
                )
            )

        return resources

    async def read_resource(self, uri: AnyUrl) -> str:
        """Read a resource by URI."""
        uri_str = str(uri)

        if uri_str == CART_URI:
            cart = await self.client.get(self.session)
            if cart is None:
                return "null"
            return cart.model_dump_json(indent=2, by_alias=True)

        raise ValueError(f"Unknown resource: {uri}")

    async def list_tools(self) -> list[Tool]:
        """List available tools."""
        return TOOLS

    async def call_tool(self, name: str, arguments: Any) -> list[TextContent]:
        """Handle tool calls."""
        try:
            text = await run_tool(name, arguments, self.client, self.session)
            return [TextContent(type="text", text=text)]
        except CartError as e:
            logger.warning(f"Tool {name} failed: {e}")
            return [TextContent(type="text", text=f"Error: {e}")]
        except Exception as e:
            logger.error(f"Error executing tool {name}: {e}", exc_info=True)
            return [TextContent(type="text", text=f"Error: {str(e)}")]


def create_server(tools: CartTools) -> Server:
    """Build an MCP server whose handlers all go through ``tools``."""
    app = Server("storefront-cart-mcp-server")
    app.list_resources()(tools.list_resources)
    app.read_resource()(tools.read_resource)
    app.list_tools()(tools.list_tools)
    app.call_tool()(tools.call_tool)
    return app


async def main() -> None:
    """Main entry point for the MCP server."""
    settings = load_settings()
    logging.getLogger().setLevel(settings.logging_level)

    tools = CartTools(StorefrontClient(settings), CartSession(cart_id=settings.cart_id))
    app = create_server(tools)

    if tools.session.cart_id:
        logger.info(f"Using cart from environment: {tools.session.cart_id}")
    else:
        logger.info("No STOREFRONT_CART_ID set; the first mutation will create a cart")

    logger.info("Starting storefront cart MCP server...")

    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        await tools.client.close()


if __name__ == "__main__":
    asyncio.run(main())
