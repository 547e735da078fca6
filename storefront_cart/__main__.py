"""Allow running as ``python -m storefront_cart``."""

from .cli import main

if __name__ == "__main__":
    main()
