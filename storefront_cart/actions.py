"""Cart mutation actions.

The seven actions form a closed set. Raw form input only becomes a typed
action through :func:`parse_action`; anything else is an
:class:`~storefront_cart.errors.InvalidActionError`.
"""

import json
from abc import abstractmethod
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError

from .errors import InvalidActionError
from .models import BuyerIdentity, Image, Money, SelectedOption, StorefrontModel

CART_TARGET = "cart"
DISCOUNT_CODES_TARGET = "discount_codes"
GIFT_CARD_CODES_TARGET = "gift_card_codes"
BUYER_IDENTITY_TARGET = "buyer_identity"


class CartActionKind(str, Enum):
    LINES_ADD = "LinesAdd"
    LINES_UPDATE = "LinesUpdate"
    LINES_REMOVE = "LinesRemove"
    DISCOUNT_CODES_UPDATE = "DiscountCodesUpdate"
    GIFT_CARD_CODES_UPDATE = "GiftCardCodesUpdate"
    GIFT_CARD_CODES_REMOVE = "GiftCardCodesRemove"
    BUYER_IDENTITY_UPDATE = "BuyerIdentityUpdate"


class Attribute(StorefrontModel):
    key: str
    value: str


class OptimisticVariant(StorefrontModel):
    """Display data the client already knows about a variant being added."""

    title: Optional[str] = None
    product_title: Optional[str] = None
    product_handle: Optional[str] = None
    price: Optional[Money] = None
    image: Optional[Image] = None
    selected_options: list[SelectedOption] = Field(default_factory=list)


class CartLineInput(StorefrontModel):
    merchandise_id: str
    quantity: int = Field(default=1, ge=1)
    attributes: Optional[list[Attribute]] = None
    selling_plan_id: Optional[str] = None
    # Never sent to the backend; only feeds the optimistic overlay.
    selected_variant: Optional[OptimisticVariant] = None


class CartLineUpdateInput(StorefrontModel):
    id: str
    quantity: int = Field(ge=0)
    merchandise_id: Optional[str] = None
    attributes: Optional[list[Attribute]] = None


class _CartAction(StorefrontModel):
    kind: CartActionKind

    @abstractmethod
    def target_keys(self) -> frozenset[str]:
        """Line, merchandise or cart-level keys this action touches."""

    def is_noop(self) -> bool:
        return False

    def inputs(self) -> dict[str, Any]:
        """Wire-format inputs as posted to the mutation endpoint."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"kind"})

    def to_form(self, redirect_to: Optional[str] = None) -> dict[str, str]:
        form = {"action": self.kind.value, "inputs": json.dumps(self.inputs())}
        if redirect_to:
            form["redirectTo"] = redirect_to
        return form


class LinesAdd(_CartAction):
    kind: Literal[CartActionKind.LINES_ADD] = CartActionKind.LINES_ADD
    lines: list[CartLineInput] = Field(default_factory=list)

    def target_keys(self) -> frozenset[str]:
        return frozenset([CART_TARGET, *(line.merchandise_id for line in self.lines)])

    def is_noop(self) -> bool:
        return not self.lines

    def backend_lines(self) -> list[dict[str, Any]]:
        return [
            line.model_dump(
                mode="json", by_alias=True, exclude_none=True, exclude={"selected_variant"}
            )
            for line in self.lines
        ]


class LinesUpdate(_CartAction):
    kind: Literal[CartActionKind.LINES_UPDATE] = CartActionKind.LINES_UPDATE
    lines: list[CartLineUpdateInput] = Field(default_factory=list)

    def target_keys(self) -> frozenset[str]:
        return frozenset(line.id for line in self.lines)

    def is_noop(self) -> bool:
        return not self.lines


class LinesRemove(_CartAction):
    kind: Literal[CartActionKind.LINES_REMOVE] = CartActionKind.LINES_REMOVE
    line_ids: list[str] = Field(default_factory=list)

    def target_keys(self) -> frozenset[str]:
        return frozenset(self.line_ids)

    def is_noop(self) -> bool:
        return not self.line_ids


def _prepend(code: Optional[str], codes: list[str]) -> list[str]:
    code = (code or "").strip()
    return ([code] if code else []) + list(codes)


class DiscountCodesUpdate(_CartAction):
    kind: Literal[CartActionKind.DISCOUNT_CODES_UPDATE] = CartActionKind.DISCOUNT_CODES_UPDATE
    discount_code: Optional[str] = None
    discount_codes: list[str] = Field(default_factory=list)

    def target_keys(self) -> frozenset[str]:
        return frozenset([DISCOUNT_CODES_TARGET])

    def codes(self) -> list[str]:
        """The code list to dispatch: the single new code first, then the existing ones."""
        return _prepend(self.discount_code, self.discount_codes)


class GiftCardCodesUpdate(_CartAction):
    kind: Literal[CartActionKind.GIFT_CARD_CODES_UPDATE] = CartActionKind.GIFT_CARD_CODES_UPDATE
    gift_card_code: Optional[str] = None
    gift_card_codes: list[str] = Field(default_factory=list)

    def target_keys(self) -> frozenset[str]:
        return frozenset([GIFT_CARD_CODES_TARGET])

    def codes(self) -> list[str]:
        return _prepend(self.gift_card_code, self.gift_card_codes)


class GiftCardCodesRemove(_CartAction):
    kind: Literal[CartActionKind.GIFT_CARD_CODES_REMOVE] = CartActionKind.GIFT_CARD_CODES_REMOVE
    # Applied gift card IDs, not codes
    gift_card_codes: list[str] = Field(default_factory=list)

    def target_keys(self) -> frozenset[str]:
        return frozenset([GIFT_CARD_CODES_TARGET])

    def is_noop(self) -> bool:
        return not self.gift_card_codes


class BuyerIdentityUpdate(_CartAction):
    kind: Literal[CartActionKind.BUYER_IDENTITY_UPDATE] = CartActionKind.BUYER_IDENTITY_UPDATE
    buyer_identity: BuyerIdentity = Field(default_factory=BuyerIdentity)

    def target_keys(self) -> frozenset[str]:
        return frozenset([BUYER_IDENTITY_TARGET])

    def is_noop(self) -> bool:
        return not self.buyer_identity.model_fields_set

    def backend_identity(self) -> dict[str, Any]:
        return self.buyer_identity.model_dump(
            mode="json", by_alias=True, exclude_unset=True, exclude={"customer"}
        )


CartAction = Annotated[
    Union[
        LinesAdd,
        LinesUpdate,
        LinesRemove,
        DiscountCodesUpdate,
        GiftCardCodesUpdate,
        GiftCardCodesRemove,
        BuyerIdentityUpdate,
    ],
    Field(discriminator="kind"),
]

_action_adapter: TypeAdapter[CartAction] = TypeAdapter(CartAction)


def parse_action(name: Optional[str], inputs: Any = None) -> CartAction:
    """
    Turn an action name and its inputs into a typed cart action.

    Args:
        name: One of the CartActionKind values
        inputs: Dict or JSON string with the action's inputs

    Raises:
        InvalidActionError: If the name is missing or unknown, or the inputs
            do not match the action
    """
    if not name:
        raise InvalidActionError(name, "No action provided")
    try:
        kind = CartActionKind(name)
    except ValueError:
        raise InvalidActionError(name, f"{name} cart action is not defined") from None

    if inputs is None or inputs == "":
        inputs = {}
    if isinstance(inputs, (str, bytes)):
        try:
            inputs = json.loads(inputs)
        except json.JSONDecodeError as e:
            raise InvalidActionError(name, f"Inputs are not valid JSON: {e}") from e
    if not isinstance(inputs, dict):
        raise InvalidActionError(name, "Inputs must be an object")

    try:
        return _action_adapter.validate_python({**inputs, "kind": kind})
    except ValidationError as e:
        raise InvalidActionError(name, f"Invalid inputs: {e.errors(include_url=False)}") from e
