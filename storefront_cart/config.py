"""Environment-driven settings for the storefront cart services."""

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_API_VERSION = "2025-01"


class Settings(BaseModel):
    """Connection and runtime settings."""

    api_url: str = Field(description="Storefront GraphQL endpoint")
    access_token: Optional[str] = Field(None, description="Public storefront access token")
    api_version: str = Field(default=DEFAULT_API_VERSION, description="Storefront API version")
    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    country: Optional[str] = Field(None, description="Buyer country code for @inContext")
    language: Optional[str] = Field(None, description="Buyer language code for @inContext")
    cart_id: Optional[str] = Field(None, description="Cart to preload for the MCP server")
    log_level: str = Field(default="INFO", description="Root logging level")

    @property
    def logging_level(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


def load_settings(environ: Optional[dict[str, str]] = None) -> Settings:
    """
    Build settings from environment variables.

    STOREFRONT_API_URL wins over STOREFRONT_SHOP_DOMAIN; when only the domain is
    given the URL is built from it and STOREFRONT_API_VERSION.

    Raises:
        ValueError: If neither the API URL nor the shop domain is configured
    """
    env = os.environ if environ is None else environ

    api_version = env.get("STOREFRONT_API_VERSION") or DEFAULT_API_VERSION
    api_url = env.get("STOREFRONT_API_URL")
    if not api_url:
        domain = env.get("STOREFRONT_SHOP_DOMAIN")
        if not domain:
            raise ValueError("Set STOREFRONT_API_URL or STOREFRONT_SHOP_DOMAIN")
        domain = domain.removeprefix("https://").rstrip("/")
        api_url = f"https://{domain}/api/{api_version}/graphql.json"

    timeout = env.get("STOREFRONT_TIMEOUT")

    return Settings(
        api_url=api_url,
        access_token=env.get("STOREFRONT_ACCESS_TOKEN") or None,
        api_version=api_version,
        timeout=float(timeout) if timeout else 30.0,
        country=env.get("STOREFRONT_COUNTRY") or None,
        language=env.get("STOREFRONT_LANGUAGE") or None,
        cart_id=env.get("STOREFRONT_CART_ID") or None,
        log_level=env.get("STOREFRONT_LOG_LEVEL") or "INFO",
    )
