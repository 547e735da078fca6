"""Session-scoped cart identity."""

import logging
from http.cookies import SimpleCookie
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

CART_COOKIE = "cart"
CART_GID_PREFIX = "gid://shopify/Cart/"


class CartSession:
    """
    Holds the cart ID for one shopper session.

    One instance per request on the server side, one per store on the client
    side. Nothing here is module-global, so independent carts can live in the
    same process.
    """

    def __init__(self, cart_id: Optional[str] = None, cookie_name: str = CART_COOKIE) -> None:
        """
        Initialize the session.

        Args:
            cart_id: Existing cart ID or bare cookie token, if any
            cookie_name: Name of the cookie carrying the cart token
        """
        self.cookie_name = cookie_name
        self._cart_id = self._normalize(cart_id)
        self.dirty = False

    @classmethod
    def from_cookies(cls, cookies: Mapping[str, str], cookie_name: str = CART_COOKIE) -> "CartSession":
        """Build a session from request cookies."""
        token = cookies.get(cookie_name)
        if token:
            logger.debug("Loaded cart token from cookie")
        return cls(cart_id=token, cookie_name=cookie_name)

    @staticmethod
    def _normalize(cart_id: Optional[str]) -> Optional[str]:
        if not cart_id:
            return None
        if cart_id.startswith("gid://"):
            return cart_id
        return f"{CART_GID_PREFIX}{cart_id}"

    @property
    def cart_id(self) -> Optional[str]:
        return self._cart_id

    @property
    def token(self) -> Optional[str]:
        """The bare cart token stored in the cookie."""
        if self._cart_id is None:
            return None
        return self._cart_id.rsplit("/", 1)[-1]

    def set_cart_id(self, cart_id: str) -> None:
        """Associate the session with a (possibly new) cart."""
        cart_id = self._normalize(cart_id)
        if cart_id != self._cart_id:
            logger.info(f"Session now targets cart {cart_id}")
            self._cart_id = cart_id
            self.dirty = True

    def clear(self) -> None:
        """Forget the cart, e.g. after the backend reports it no longer exists."""
        if self._cart_id is not None:
            self._cart_id = None
            self.dirty = True

    def set_cookie_header(self) -> Optional[str]:
        """
        Value for a Set-Cookie header, or None if the cart ID did not change.

        A cleared session gets an expired cookie so the browser drops the token.
        """
        if not self.dirty:
            return None
        cookie = SimpleCookie()
        cookie[self.cookie_name] = self.token or ""
        morsel = cookie[self.cookie_name]
        morsel["path"] = "/"
        if self.token is None:
            morsel["max-age"] = 0
        morsel["httponly"] = True
        morsel["samesite"] = "Lax"
        return morsel.OutputString()
