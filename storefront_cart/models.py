"""Data models for storefront cart entities."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .errors import BackendMutationError


class StorefrontModel(BaseModel):
    """Base model speaking the storefront API's camelCase wire format."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-safe dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _unwrap_connection(value: Any) -> Any:
    """Accept GraphQL connections ({nodes: [...]} or {edges: [{node}]}) as plain lists."""
    if isinstance(value, dict):
        if "nodes" in value:
            return value["nodes"]
        if "edges" in value:
            return [edge["node"] for edge in value["edges"]]
    return value


class Money(StorefrontModel):
    """A decimal amount in a currency."""

    amount: Decimal = Field(description="Decimal amount")
    currency_code: str = Field(description="ISO 4217 currency code")

    def __mul__(self, quantity: int) -> "Money":
        return Money(amount=self.amount * quantity, currency_code=self.currency_code)

    def __add__(self, other: "Money") -> "Money":
        if other.currency_code != self.currency_code:
            raise ValueError(
                f"Cannot add {other.currency_code} to {self.currency_code}"
            )
        return Money(amount=self.amount + other.amount, currency_code=self.currency_code)


class Image(StorefrontModel):
    url: str
    alt_text: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


class SelectedOption(StorefrontModel):
    name: str
    value: str


class Merchandise(StorefrontModel):
    """Snapshot of a purchasable variant captured on a cart line."""

    id: str = Field(description="Variant ID")
    title: Optional[str] = Field(None, description="Variant title")
    product_title: Optional[str] = Field(None, description="Parent product title")
    product_handle: Optional[str] = Field(None, description="Parent product handle")
    price: Optional[Money] = Field(None, description="Unit price")
    image: Optional[Image] = None
    selected_options: list[SelectedOption] = Field(default_factory=list)
    available_for_sale: Optional[bool] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_product(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("product"), dict):
            data = dict(data)
            product = data.pop("product")
            data.setdefault("productTitle", product.get("title"))
            data.setdefault("productHandle", product.get("handle"))
        return data


class CartLineCost(StorefrontModel):
    total_amount: Money
    amount_per_quantity: Optional[Money] = None
    compare_at_amount_per_quantity: Optional[Money] = None


class DiscountAllocation(StorefrontModel):
    discounted_amount: Money
    title: Optional[str] = None
    code: Optional[str] = None


class CartLine(StorefrontModel):
    """A line in the cart. Lines with quantity 0 do not exist."""

    id: str = Field(description="Line ID assigned by the backend")
    quantity: int = Field(gt=0, description="Quantity of the merchandise")
    cost: CartLineCost
    merchandise: Merchandise
    discount_allocations: list[DiscountAllocation] = Field(default_factory=list)

    @property
    def unit_price(self) -> Optional[Money]:
        if self.cost is not None and self.cost.amount_per_quantity is not None:
            return self.cost.amount_per_quantity
        return self.merchandise.price


class CartCost(StorefrontModel):
    subtotal_amount: Money
    total_amount: Money
    total_tax_amount: Optional[Money] = None


class CartDiscountCode(StorefrontModel):
    """
    A discount code on the cart.

    ``applicable`` is always a boolean on authoritative carts; ``None`` marks a
    code that has been submitted but not yet confirmed by the backend.
    """

    code: str
    applicable: Optional[bool] = None


class AppliedGiftCard(StorefrontModel):
    id: str = Field(description="Applied gift card ID")
    last_characters: str = Field(description="Last characters of the gift card code")
    amount_used: Optional[Money] = None
    pending: bool = Field(default=False, description="Submitted but not yet confirmed")


class BuyerIdentity(StorefrontModel):
    """Partial buyer identity. Unset fields are left untouched on update."""

    email: Optional[str] = None
    phone: Optional[str] = None
    country_code: Optional[str] = None
    customer_access_token: Optional[str] = None
    company_location_id: Optional[str] = None
    customer: Optional[dict[str, Any]] = None
    delivery_address_preferences: Optional[list[dict[str, Any]]] = None

    def merged(self, partial: "BuyerIdentity") -> "BuyerIdentity":
        """Return a copy with the fields explicitly set on ``partial`` applied."""
        return self.model_copy(update=partial.model_dump(exclude_unset=True))


class Cart(StorefrontModel):
    """Authoritative cart snapshot owned by the commerce backend."""

    id: str = Field(description="Opaque cart ID")
    lines: list[CartLine] = Field(default_factory=list)
    total_quantity: int = Field(default=0, ge=0)
    cost: CartCost
    discount_codes: list[CartDiscountCode] = Field(default_factory=list)
    applied_gift_cards: list[AppliedGiftCard] = Field(default_factory=list)
    buyer_identity: BuyerIdentity = Field(default_factory=BuyerIdentity)
    checkout_url: Optional[str] = None
    note: Optional[str] = None
    updated_at: Optional[datetime] = None

    @field_validator("lines", mode="before")
    @classmethod
    def _lines_from_connection(cls, value: Any) -> Any:
        return _unwrap_connection(value)

    @model_validator(mode="after")
    def _check_total_quantity(self) -> "Cart":
        line_total = sum(line.quantity for line in self.lines)
        if self.total_quantity != line_total:
            raise ValueError(
                f"totalQuantity {self.total_quantity} does not match line quantities {line_total}"
            )
        return self


class CartUserError(StorefrontModel):
    """Backend rejection of a mutation; the mutation did not apply."""

    message: str
    code: Optional[str] = None
    field: Optional[list[str]] = None


class CartWarning(StorefrontModel):
    """Soft failure accompanying an otherwise applied mutation."""

    message: str
    code: Optional[str] = None
    target: Optional[str] = None


class CartResult(StorefrontModel):
    """Result of one cart aggregate call."""

    cart: Optional[Cart] = None
    errors: list[CartUserError] = Field(default_factory=list)
    warnings: list[CartWarning] = Field(default_factory=list)

    @property
    def applied(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> "CartResult":
        """
        Raise if the backend rejected the mutation.

        Raises:
            BackendMutationError: If ``errors`` is non-empty
        """
        if self.errors:
            raise BackendMutationError(self.errors)
        return self
