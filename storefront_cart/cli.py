"""Command-line interface for the storefront cart server."""

import argparse
import asyncio
import sys


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Storefront Cart Server - cart mutation endpoint and MCP tools"
    )
    parser.add_argument(
        "--mode",
        choices=["stdio", "http"],
        default="http",
        help="Server mode: http (cart mutation endpoint) or stdio (for MCP clients)",
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="HTTP server host (only for http mode, default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="HTTP server port (only for http mode, default: 8000)",
    )

    args = parser.parse_args()

    try:
        if args.mode == "stdio":
            from .server import main as server_main

            asyncio.run(server_main())
        else:
            from .http_server import run_http_server

            print(f"Starting Storefront Cart HTTP Server on {args.host}:{args.port}", file=sys.stderr)
            print(f"API documentation available at http://{args.host}:{args.port}/docs", file=sys.stderr)
            run_http_server(host=args.host, port=args.port)
    except KeyboardInterrupt:
        print("\nShutting down...", file=sys.stderr)
        sys.exit(0)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
