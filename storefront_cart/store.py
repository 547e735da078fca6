"""Client-side cart runtime: authoritative cart, pending mutations, optimistic view."""

import logging
from typing import Any, Callable, Optional, Protocol

import httpx
from pydantic import ValidationError

from .actions import CartAction, parse_action
from .endpoint import CART_ROUTE
from .errors import InvalidActionError, TransportError
from .models import Cart, CartResult
from .overlay import OptimisticCartView, build_overlay
from .results import Err, MutationResult, Ok
from .revalidation import RevalidationCoordinator, RevalidationEvent, RevalidationTrigger
from .session import CartSession
from .storefront_client import StorefrontClient
from .tracker import PendingMutation, PendingMutationTracker, SubmissionError

logger = logging.getLogger(__name__)


class CartTransport(Protocol):
    """How a store reaches the mutation endpoint and the authoritative cart."""

    async def send(self, action: CartAction) -> CartResult: ...

    async def fetch(self) -> Optional[Cart]: ...


class DirectTransport:
    """Calls the storefront client in-process with a store-owned session."""

    def __init__(self, client: StorefrontClient, session: Optional[CartSession] = None) -> None:
        self.client = client
        self.session = session or CartSession()

    async def send(self, action: CartAction) -> CartResult:
        return await self.client.execute(action, self.session)

    async def fetch(self) -> Optional[Cart]:
        return await self.client.get(self.session)


class EndpointTransport:
    """Posts cart forms to the HTTP mutation endpoint."""

    def __init__(
        self,
        base_url: str,
        route: str = CART_ROUTE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize the endpoint transport.

        Args:
            base_url: Storefront server URL
            route: Cart route on that server
            transport: Optional httpx transport (e.g. ASGITransport in tests)
            timeout: HTTP timeout in seconds
        """
        self.route = route
        # The cookie jar carries the cart token between requests.
        self.client = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=timeout,
            follow_redirects=False,
        )

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(
                f"Cart endpoint returned a non-JSON body (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from e
        if not isinstance(body, dict):
            raise TransportError("Cart endpoint returned an unexpected body", response.status_code)
        return body

    @staticmethod
    def _error_detail(body: dict[str, Any]) -> str:
        error = body.get("error") or {}
        return str(error.get("detail") or body.get("detail") or "Unknown error")

    async def send(self, action: CartAction) -> CartResult:
        """
        Post one action.

        Raises:
            InvalidActionError: If the endpoint rejected the action (400)
            TransportError: On network failure or any other unexpected response
        """
        try:
            response = await self.client.post(self.route, data=action.to_form())
        except httpx.HTTPError as e:
            raise TransportError(f"Cart endpoint unreachable: {e}") from e

        body = self._json(response)
        if response.status_code == 400:
            raise InvalidActionError(action.kind.value, self._error_detail(body))
        if response.status_code not in (200, 303):
            raise TransportError(self._error_detail(body), status_code=response.status_code)

        try:
            return CartResult.model_validate(
                {
                    "cart": body.get("cart"),
                    "errors": body.get("errors") or [],
                    "warnings": body.get("warnings") or [],
                }
            )
        except ValidationError as e:
            raise TransportError(f"Malformed cart endpoint response: {e}") from e

    async def fetch(self) -> Optional[Cart]:
        try:
            response = await self.client.get(self.route)
        except httpx.HTTPError as e:
            raise TransportError(f"Cart endpoint unreachable: {e}") from e

        body = self._json(response)
        if response.status_code != 200:
            raise TransportError(self._error_detail(body), status_code=response.status_code)
        try:
            return Cart.model_validate(body["cart"]) if body.get("cart") else None
        except ValidationError as e:
            raise TransportError(f"Malformed cart endpoint response: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()


class CartStore:
    """
    Owns the authoritative cart and the pending mutation registry for one shopper.

    ``view()`` is what the UI renders; ``submit()`` is how it changes the cart.
    The authoritative cart only ever comes from endpoint responses and
    revalidation fetches.
    """

    def __init__(
        self,
        transport: CartTransport,
        cart: Optional[Cart] = None,
        tracker: Optional[PendingMutationTracker] = None,
    ) -> None:
        self.transport = transport
        self.tracker = tracker or PendingMutationTracker()
        self.revalidator: RevalidationCoordinator[Optional[Cart]] = RevalidationCoordinator(self._fetch)
        self._cart = cart
        self._listeners: list[Callable[[OptimisticCartView], None]] = []

    @property
    def cart(self) -> Optional[Cart]:
        """The last authoritative cart."""
        return self._cart

    def view(self) -> OptimisticCartView:
        return build_overlay(self._cart, self.tracker.pending())

    def subscribe(self, listener: Callable[[OptimisticCartView], None]) -> Callable[[], None]:
        """Call ``listener`` with a fresh view on every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        view = self.view()
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception as e:
                logger.error(f"Cart listener failed: {e}", exc_info=True)

    def _adopt(self, cart: Optional[Cart], source: str) -> bool:
        current = self._cart
        if (
            cart is not None
            and current is not None
            and cart.id == current.id
            and cart.updated_at is not None
            and current.updated_at is not None
            and cart.updated_at < current.updated_at
        ):
            logger.info(f"Ignoring {source} cart older than the current one")
            return False
        self._cart = cart
        return True

    async def _fetch(self) -> Optional[Cart]:
        cart = await self.transport.fetch()
        self._adopt(cart, "revalidated")
        self._notify()
        return cart

    async def refresh(self) -> Optional[Cart]:
        """Explicitly re-fetch the authoritative cart."""
        await self.revalidator.notify(RevalidationEvent(trigger=RevalidationTrigger.EXPLICIT))
        return self._cart

    async def navigate(self, current_url: str, next_url: str) -> bool:
        """Report a navigation. Returns True if it caused a revalidation (it never does)."""
        return await self.revalidator.notify(
            RevalidationEvent(
                trigger=RevalidationTrigger.NAVIGATION,
                current_url=current_url,
                next_url=next_url,
            )
        )

    async def _revalidate_after(self, action: CartAction) -> None:
        event = RevalidationEvent(
            trigger=RevalidationTrigger.MUTATION,
            form_method="POST",
            noop=action.is_noop(),
        )
        try:
            await self.revalidator.notify(event)
        except TransportError as e:
            logger.warning(f"Revalidation after {action.kind.value} failed: {e.detail}")

    def _settle_with_error(self, pending: PendingMutation, kind: str, detail: str) -> None:
        self.tracker.settle(
            pending.submission_id,
            error=SubmissionError(
                submission_id=pending.submission_id,
                kind=kind,
                detail=detail,
                action_kind=pending.kind,
                target_keys=pending.target_keys,
            ),
        )

    def _fail(self, pending: PendingMutation, kind: str, detail: str) -> Err:
        """Settle a submission that never got a response."""
        self._settle_with_error(pending, kind, detail)
        self._notify()
        return Err(kind=kind, detail=detail, submission_id=pending.submission_id)

    async def submit_form(self, name: Optional[str], inputs: Any = None) -> MutationResult:
        """Parse and submit raw action input. Invalid input never reaches the endpoint."""
        try:
            action = parse_action(name, inputs)
        except InvalidActionError as e:
            logger.warning(f"Invalid cart action {name!r}: {e.detail}")
            return Err(kind="invalid_action", detail=e.detail)
        return await self.submit(action)

    async def submit(self, action: CartAction) -> MutationResult:
        """
        Submit one mutation.

        The overlay shows the mutation from the moment it is registered until
        it settles. On success the response cart becomes authoritative before
        the submission settles, so the view never flashes back to stale data.
        A revalidation follows every response.

        Returns:
            Ok with the adopted cart and warnings, or Err describing why the
            mutation did not apply
        """
        if action.is_noop():
            logger.debug(f"Skipping no-op {action.kind.value}")
            return Ok(cart=self._cart)

        pending = self.tracker.register(action)
        submission_id = pending.submission_id

        try:
            self._notify()
            result = await self.transport.send(action)
        except (InvalidActionError, TransportError) as e:
            logger.error(f"{action.kind.value} submission {submission_id} failed: {e.detail}")
            return self._fail(pending, e.kind, e.detail)
        except Exception as e:
            # Anything else still settles, or the overlay would keep the patch forever.
            logger.error(f"{action.kind.value} submission {submission_id} failed: {e}", exc_info=True)
            return self._fail(pending, TransportError.kind, str(e) or type(e).__name__)

        if result.errors:
            detail = "; ".join(error.message for error in result.errors)
            self._settle_with_error(pending, "backend", detail)
            outcome: MutationResult = Err(
                kind="backend",
                detail=detail,
                errors=result.errors,
                submission_id=submission_id,
            )
        else:
            if result.cart is not None:
                self._adopt(result.cart, "response")
            self.tracker.settle(submission_id)
            if result.warnings:
                logger.info(f"{action.kind.value} applied with {len(result.warnings)} warning(s)")
            outcome = Ok(cart=result.cart, warnings=result.warnings, submission_id=submission_id)

        self._notify()
        await self._revalidate_after(action)
        return outcome
