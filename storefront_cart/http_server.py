"""HTTP server exposing the cart mutation endpoint."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from . import __version__
from .config import Settings, load_settings
from .endpoint import CART_ROUTE, handle_cart_form
from .errors import TransportError
from .session import CartSession
from .storefront_client import StorefrontClient

logger = logging.getLogger("storefront-cart-http-server")


def get_storefront_client(request: Request) -> StorefrontClient:
    return request.app.state.storefront_client


def get_cart_session(request: Request) -> CartSession:
    """One cart session per request, read from the cart cookie."""
    return CartSession.from_cookies(request.cookies)


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[StorefrontClient] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use; loaded from the environment when omitted
        client: Pre-built storefront client (tests pass one with a mock transport)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown."""
        logger.info("Starting storefront cart HTTP server...")
        owned = getattr(app.state, "storefront_client", None) is None
        if owned:
            app.state.storefront_client = StorefrontClient(settings or load_settings())

        yield

        logger.info("Shutting down storefront cart HTTP server...")
        if owned:
            await app.state.storefront_client.close()
            app.state.storefront_client = None

    app = FastAPI(
        title="Storefront Cart Server",
        description="Cart mutation endpoint backed by a storefront GraphQL API",
        version=__version__,
        lifespan=lifespan,
    )
    if client is not None:
        app.state.storefront_client = client

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "Storefront Cart Server",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "cart": {"get": f"GET {CART_ROUTE}", "mutate": f"POST {CART_ROUTE}"},
            },
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get(CART_ROUTE)
    async def get_cart(
        session: CartSession = Depends(get_cart_session),
        storefront: StorefrontClient = Depends(get_storefront_client),
    ):
        """Get the authoritative cart for this session."""
        try:
            cart = await storefront.get(session)
        except TransportError as e:
            logger.error(f"Get cart error: {e.detail}")
            return JSONResponse(
                status_code=502,
                content={"error": {"kind": e.kind, "detail": e.detail}},
            )
        body = {"cart": cart.to_wire() if cart else None}
        cookie = session.set_cookie_header()
        if cookie:
            return JSONResponse(content=body, headers={"Set-Cookie": cookie})
        return body

    @app.post(CART_ROUTE)
    async def mutate_cart(
        request: Request,
        session: CartSession = Depends(get_cart_session),
        storefront: StorefrontClient = Depends(get_storefront_client),
    ):
        """Apply one cart action posted as a form."""
        try:
            form = await request.form()
            fields = {key: value for key, value in form.items() if isinstance(value, str)}
            response = await handle_cart_form(fields, session, storefront)
        except Exception as e:
            logger.error(f"Cart action error: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=str(e))

        return JSONResponse(
            status_code=response.status_code,
            content=response.body,
            headers=response.headers,
        )

    return app


def run_http_server(host: str = "0.0.0.0", port: int = 8000, settings: Optional[Settings] = None):
    """Run the HTTP server."""
    import uvicorn

    settings = settings or load_settings()
    logging.basicConfig(level=settings.logging_level)
    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run_http_server()
