"""Optimistic cart overlay.

:func:`build_overlay` merges the last authoritative cart with the pending
mutations into the view the UI renders. It is a pure function: the same
inputs always give an equal view, and nothing is cached between calls.
"""

import logging
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from pydantic import ConfigDict, Field

from .actions import (
    BuyerIdentityUpdate,
    DiscountCodesUpdate,
    GiftCardCodesRemove,
    GiftCardCodesUpdate,
    LinesAdd,
    LinesRemove,
    LinesUpdate,
)
from .models import (
    AppliedGiftCard,
    BuyerIdentity,
    Cart,
    CartCost,
    CartDiscountCode,
    CartLine,
    CartLineCost,
    Merchandise,
    Money,
    StorefrontModel,
)
from .tracker import PendingMutation, has_pending_lines_add

logger = logging.getLogger(__name__)

OPTIMISTIC_ID_PREFIX = "optimistic:"


class CartViewStatus(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"


class OptimisticCartLine(CartLine):
    """A cart line as rendered, possibly synthetic or awaiting a response."""

    cost: Optional[CartLineCost] = None
    is_optimistic: bool = Field(default=False, description="Synthetic line without a backend ID")
    is_pending: bool = Field(default=False, description="Targeted by an unsettled mutation")


class OptimisticCartView(StorefrontModel):
    """The cart the UI renders. Derived, never persisted."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    lines: list[OptimisticCartLine] = Field(default_factory=list)
    total_quantity: int = 0
    cost: Optional[CartCost] = None
    cost_is_provisional: bool = Field(
        default=False,
        description="Cost is a unit price x quantity estimate; tax and discounts are not applied",
    )
    discount_codes: list[CartDiscountCode] = Field(default_factory=list)
    applied_gift_cards: list[AppliedGiftCard] = Field(default_factory=list)
    buyer_identity: BuyerIdentity = Field(default_factory=BuyerIdentity)
    checkout_url: Optional[str] = None
    status: CartViewStatus = CartViewStatus.EMPTY
    pending_submission_ids: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.status is CartViewStatus.EMPTY

    @property
    def is_loading(self) -> bool:
        return self.status is CartViewStatus.LOADING

    @property
    def has_pending(self) -> bool:
        return bool(self.pending_submission_ids)


def optimistic_line_id(submission_id: str, index: int) -> str:
    return f"{OPTIMISTIC_ID_PREFIX}{submission_id}:{index}"


def is_optimistic_id(line_id: str) -> bool:
    return line_id.startswith(OPTIMISTIC_ID_PREFIX)


def _line_cost(line: OptimisticCartLine, quantity: int) -> Optional[CartLineCost]:
    unit = line.unit_price
    if unit is not None:
        return CartLineCost(total_amount=unit * quantity, amount_per_quantity=unit)
    if line.cost is not None and line.quantity:
        total = line.cost.total_amount
        return CartLineCost(
            total_amount=Money(
                amount=total.amount * Decimal(quantity) / Decimal(line.quantity),
                currency_code=total.currency_code,
            )
        )
    return None


class _Draft:
    """Mutable working copy used while patches are applied."""

    def __init__(self, cart: Optional[Cart]) -> None:
        self.lines: list[OptimisticCartLine] = [
            OptimisticCartLine.model_validate(line.model_dump()) for line in cart.lines
        ] if cart else []
        self.discount_codes = [code.model_copy() for code in cart.discount_codes] if cart else []
        self.gift_cards = [card.model_copy() for card in cart.applied_gift_cards] if cart else []
        self.buyer_identity = cart.buyer_identity.model_copy() if cart else BuyerIdentity()
        self.lines_touched = False
        self.codes_touched = False

    def apply(self, mutation: PendingMutation) -> None:
        action = mutation.action
        if isinstance(action, LinesAdd):
            self._add_lines(mutation.submission_id, action)
        elif isinstance(action, LinesUpdate):
            self._update_lines(action)
        elif isinstance(action, LinesRemove):
            self._remove_lines(action)
        elif isinstance(action, DiscountCodesUpdate):
            self._update_discount_codes(action)
        elif isinstance(action, GiftCardCodesUpdate):
            self._update_gift_cards(mutation.submission_id, action)
        elif isinstance(action, GiftCardCodesRemove):
            self._remove_gift_cards(action)
        elif isinstance(action, BuyerIdentityUpdate):
            self.buyer_identity = self.buyer_identity.merged(action.buyer_identity)

    def _add_lines(self, submission_id: str, action: LinesAdd) -> None:
        for index, line_input in enumerate(action.lines):
            if line_input.quantity <= 0:
                continue
            self.lines_touched = True

            # The backend folds repeat merchandise into the existing line.
            existing = next(
                (
                    (position, line)
                    for position, line in enumerate(self.lines)
                    if line.merchandise.id == line_input.merchandise_id
                ),
                None,
            )
            if existing is not None:
                position, line = existing
                quantity = line.quantity + line_input.quantity
                self.lines[position] = line.model_copy(
                    update={
                        "quantity": quantity,
                        "cost": _line_cost(line, quantity),
                        "discount_allocations": [],
                        "is_pending": True,
                    }
                )
                continue

            variant = line_input.selected_variant
            merchandise = Merchandise(
                id=line_input.merchandise_id,
                title=variant.title if variant else None,
                product_title=variant.product_title if variant else None,
                product_handle=variant.product_handle if variant else None,
                price=variant.price if variant else None,
                image=variant.image if variant else None,
                selected_options=list(variant.selected_options) if variant else [],
            )
            cost = None
            if merchandise.price is not None:
                cost = CartLineCost(
                    total_amount=merchandise.price * line_input.quantity,
                    amount_per_quantity=merchandise.price,
                )
            self.lines.append(
                OptimisticCartLine(
                    id=optimistic_line_id(submission_id, index),
                    quantity=line_input.quantity,
                    cost=cost,
                    merchandise=merchandise,
                    is_optimistic=True,
                    is_pending=True,
                )
            )

    def _update_lines(self, action: LinesUpdate) -> None:
        quantities = {line.id: line.quantity for line in action.lines}
        patched: list[OptimisticCartLine] = []
        for line in self.lines:
            if line.id not in quantities:
                patched.append(line)
                continue
            self.lines_touched = True
            quantity = quantities[line.id]
            if quantity <= 0:
                continue
            patched.append(
                line.model_copy(
                    update={
                        "quantity": quantity,
                        "cost": _line_cost(line, quantity),
                        "discount_allocations": [],
                        "is_pending": True,
                    }
                )
            )
        self.lines = patched

    def _remove_lines(self, action: LinesRemove) -> None:
        targets = set(action.line_ids)
        kept = [line for line in self.lines if line.id not in targets]
        if len(kept) != len(self.lines):
            self.lines_touched = True
        self.lines = kept

    def _update_discount_codes(self, action: DiscountCodesUpdate) -> None:
        known = {code.code.lower(): code for code in self.discount_codes}
        codes: list[CartDiscountCode] = []
        seen: set[str] = set()
        for code in action.codes():
            key = code.lower()
            if key in seen:
                continue
            seen.add(key)
            # Only the backend decides applicability; new codes stay pending.
            codes.append(known.get(key) or CartDiscountCode(code=code, applicable=None))
        self.discount_codes = codes
        self.codes_touched = True

    def _update_gift_cards(self, submission_id: str, action: GiftCardCodesUpdate) -> None:
        cards: list[AppliedGiftCard] = []
        for index, code in enumerate(action.codes()):
            code = code.strip()
            existing = next(
                (
                    card
                    for card in self.gift_cards
                    if card.last_characters and code.lower().endswith(card.last_characters.lower())
                    and card not in cards
                ),
                None,
            )
            cards.append(
                existing
                or AppliedGiftCard(
                    id=optimistic_line_id(submission_id, index),
                    last_characters=code[-4:],
                    pending=True,
                )
            )
        self.gift_cards = cards
        self.codes_touched = True

    def _remove_gift_cards(self, action: GiftCardCodesRemove) -> None:
        targets = set(action.gift_card_codes)
        self.gift_cards = [card for card in self.gift_cards if card.id not in targets]
        self.codes_touched = True


def _estimate_cost(lines: list[OptimisticCartLine], fallback: Optional[CartCost]) -> Optional[CartCost]:
    """
    Re-sum line costs into a provisional subtotal.

    Tax is carried over from the authoritative cost and the total moves by
    the same amount as the subtotal. Without an authoritative cost in the same
    currency the total is the subtotal.
    """
    currency = None
    if fallback is not None:
        currency = fallback.subtotal_amount.currency_code
    amount = Decimal("0")
    for line in lines:
        if line.cost is None:
            continue
        total = line.cost.total_amount
        if currency is None:
            currency = total.currency_code
        if total.currency_code != currency:
            logger.warning(f"Skipping line {line.id} priced in {total.currency_code}, cart is in {currency}")
            continue
        amount += total.amount
    if currency is None:
        return fallback
    subtotal = Money(amount=amount, currency_code=currency)
    if fallback is None or fallback.total_amount.currency_code != currency:
        return CartCost(subtotal_amount=subtotal, total_amount=subtotal)
    delta = Money(amount=amount - fallback.subtotal_amount.amount, currency_code=currency)
    return CartCost(
        subtotal_amount=subtotal,
        total_amount=fallback.total_amount + delta,
        total_tax_amount=fallback.total_tax_amount,
    )


def _status(lines: list[OptimisticCartLine], pending: Iterable[PendingMutation]) -> CartViewStatus:
    if any(not line.is_optimistic for line in lines):
        return CartViewStatus.READY
    if has_pending_lines_add(pending):
        return CartViewStatus.LOADING
    return CartViewStatus.READY if lines else CartViewStatus.EMPTY


def build_overlay(
    cart: Optional[Cart],
    pending: Iterable[PendingMutation] = (),
) -> OptimisticCartView:
    """
    Build the optimistic view of ``cart`` with every unsettled mutation applied.

    Patches are applied in submission order. A cart with no backend lines and
    an add in flight is LOADING, not EMPTY. Never raises: a patch that cannot
    be applied is logged and skipped.

    Args:
        cart: Last authoritative cart, or None if the session has none yet
        pending: Pending mutations, e.g. ``tracker.pending()``

    Returns:
        The view to render
    """
    mutations = sorted(
        (mutation for mutation in pending if not mutation.settled),
        key=lambda mutation: mutation.sequence,
    )
    draft = _Draft(cart)
    for mutation in mutations:
        try:
            draft.apply(mutation)
        except Exception:
            logger.exception(f"Could not apply {mutation.kind.value} submission {mutation.submission_id}")

    pending_targets = set()
    for mutation in mutations:
        pending_targets |= mutation.target_keys
    lines = [
        line if line.is_pending or line.id not in pending_targets
        else line.model_copy(update={"is_pending": True})
        for line in draft.lines
    ]

    provisional = draft.lines_touched or draft.codes_touched
    authoritative_cost = cart.cost if cart else None
    cost = _estimate_cost(lines, authoritative_cost) if draft.lines_touched else authoritative_cost

    return OptimisticCartView(
        id=cart.id if cart else None,
        lines=lines,
        total_quantity=sum(line.quantity for line in lines),
        cost=cost,
        cost_is_provisional=provisional,
        discount_codes=draft.discount_codes,
        applied_gift_cards=draft.gift_cards,
        buyer_identity=draft.buyer_identity,
        checkout_url=cart.checkout_url if cart else None,
        status=_status(lines, mutations),
        pending_submission_ids=[mutation.submission_id for mutation in mutations],
    )
