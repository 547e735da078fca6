"""Cart mutation endpoint: decode a posted form, dispatch, build the response."""

import json
import logging
from enum import Enum
from typing import Any, Mapping, Optional, Protocol

from pydantic import BaseModel, Field

from .actions import CartAction, parse_action
from .errors import InvalidActionError, TransportError
from .models import CartResult
from .session import CartSession

logger = logging.getLogger(__name__)

CART_ROUTE = "/cart"
FORM_INPUT_FIELD = "cartFormInput"


class CartBackend(Protocol):
    async def execute(self, action: CartAction, session: CartSession) -> CartResult: ...


class MutationStage(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    DISPATCHED = "dispatched"
    RESPONDED = "responded"


class EndpointResponse(BaseModel):
    """Transport-neutral HTTP response produced by the endpoint."""

    status_code: int = 200
    body: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    stage: MutationStage = MutationStage.RECEIVED


def decode_form(form: Mapping[str, Any]) -> tuple[CartAction, Optional[str]]:
    """
    Decode a posted cart form into a typed action and optional redirect.

    Accepts ``action`` + JSON ``inputs`` fields, or the combined
    ``cartFormInput`` field holding ``{"action": ..., "inputs": ...}``.

    Raises:
        InvalidActionError: If no valid action can be decoded
    """
    name = form.get("action")
    inputs: Any = form.get("inputs")

    combined = form.get(FORM_INPUT_FIELD)
    if combined and not name:
        try:
            decoded = json.loads(combined)
        except (TypeError, json.JSONDecodeError) as e:
            raise InvalidActionError(None, f"{FORM_INPUT_FIELD} is not valid JSON") from e
        if not isinstance(decoded, dict):
            raise InvalidActionError(None, f"{FORM_INPUT_FIELD} must be an object")
        name = decoded.get("action")
        inputs = decoded.get("inputs")

    action = parse_action(name, inputs)
    return action, _safe_redirect(form.get("redirectTo"))


def _safe_redirect(value: Any) -> Optional[str]:
    """Only same-site absolute paths are followed."""
    if not isinstance(value, str) or not value:
        return None
    if not value.startswith("/") or value.startswith("//") or "\\" in value:
        logger.warning(f"Ignoring off-site redirectTo: {value!r}")
        return None
    return value


def _error_body(kind: str, detail: str) -> dict[str, Any]:
    return {"error": {"kind": kind, "detail": detail}}


async def handle_cart_form(
    form: Mapping[str, Any],
    session: CartSession,
    backend: CartBackend,
) -> EndpointResponse:
    """
    Run one request through received → validated → dispatched → responded.

    Args:
        form: Decoded form fields of the POST
        session: The request's cart session; its cart ID is persisted via a
            Set-Cookie header when the result carries a cart
        backend: Cart aggregate client

    Returns:
        200 with ``{cart, errors, warnings, analytics}``, 303 with Location
        when a redirect was requested and the mutation applied, 400 for an
        invalid action (no backend call), 502 when the backend is unreachable
    """
    stage = MutationStage.RECEIVED

    try:
        action, redirect_to = decode_form(form)
    except InvalidActionError as e:
        logger.warning(f"Rejected cart form: {e.detail}")
        return EndpointResponse(
            status_code=400,
            body=_error_body(e.kind, e.detail),
            stage=stage,
        )
    stage = MutationStage.VALIDATED
    logger.debug(f"Validated {action.kind.value}")

    stage = MutationStage.DISPATCHED
    try:
        result = await backend.execute(action, session)
    except TransportError as e:
        logger.error(f"{action.kind.value} failed in transport: {e.detail}")
        return EndpointResponse(
            status_code=502,
            body=_error_body(e.kind, e.detail),
            stage=stage,
        )

    cart_id = result.cart.id if result.cart else None
    body = {
        "cart": result.cart.to_wire() if result.cart else None,
        "errors": [error.to_wire() for error in result.errors],
        "warnings": [warning.to_wire() for warning in result.warnings],
        "analytics": {"cartId": cart_id},
    }

    headers: dict[str, str] = {}
    cookie = session.set_cookie_header()
    if cookie:
        headers["Set-Cookie"] = cookie

    status_code = 200
    if redirect_to and result.applied:
        status_code = 303
        headers["Location"] = redirect_to
    elif redirect_to:
        logger.info(f"Skipping redirect to {redirect_to}: mutation rejected")

    stage = MutationStage.RESPONDED
    logger.info(
        f"{action.kind.value} -> {status_code} (errors={len(result.errors)}, warnings={len(result.warnings)})"
    )
    return EndpointResponse(status_code=status_code, body=body, headers=headers, stage=stage)
