"""Cart error taxonomy."""

from typing import Optional


class CartError(Exception):
    """Base class for cart mutation failures."""

    kind = "cart"


class InvalidActionError(CartError):
    """Missing or unrecognized action, or inputs that do not match it.

    Raised before any backend call is made.
    """

    kind = "invalid_action"

    def __init__(self, action: Optional[str], detail: str) -> None:
        super().__init__(detail)
        self.action = action
        self.detail = detail


class TransportError(CartError):
    """Backend unreachable or returned a malformed response."""

    kind = "transport"

    def __init__(self, detail: str, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class BackendMutationError(CartError):
    """The backend understood the mutation but rejected it."""

    kind = "backend"

    def __init__(self, errors: list) -> None:
        self.errors = list(errors)
        self.detail = "; ".join(getattr(error, "message", str(error)) for error in self.errors)
        super().__init__(self.detail or "Cart mutation rejected")
