#!/usr/bin/env python3
"""
PlantUML MCP - Entry Point

Supports multiple transport modes:
- stdio: Standard I/O (default, for Claude Desktop)
- sse: Server-Sent Events over HTTP
- http: Streamable HTTP transport
"""

import argparse
import logging
import os
import sys


def main():
    parser = argparse.ArgumentParser(
        description="MCP server for PlantUML diagram generation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with STDIO transport (default, for Claude Desktop)
  plantuml-mcp

  # Use a self-hosted PlantUML server
  plantuml-mcp --server-url http://localhost:8080

  # Allow saving diagrams under ./docs and /tmp as well as the cwd
  plantuml-mcp --allowed-dirs "./docs:/tmp"

  # Run with SSE transport on port 8080
  plantuml-mcp --transport sse --port 8080

Note: SSE/HTTP transports require the 'sse' or 'http' extra.
"""
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "http"],
        default="stdio",
        help="Transport mode (default: stdio)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port for SSE/HTTP transport (default: 8080)"
    )
    parser.add_argument(
        "--host",
        type=str,
        default="0.0.0.0",
        help="Host to bind for SSE/HTTP transport (default: 0.0.0.0)"
    )
    parser.add_argument(
        "--server-url",
        type=str,
        default=None,
        help="PlantUML server URL (default: $PLANTUML_SERVER_URL or https://www.plantuml.com/plantuml)"
    )
    parser.add_argument(
        "--allowed-dirs",
        type=str,
        default=None,
        help="Colon-separated directories diagrams may be saved to, or '*' for any (default: $PLANTUML_ALLOWED_DIRS)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Log level for stderr logging (default: WARNING)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__import__('plantuml_mcp').__version__}"
    )

    args = parser.parse_args()

    # stdout carries the stdio transport, so logs go to stderr
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.allowed_dirs is not None:
        os.environ["PLANTUML_ALLOWED_DIRS"] = args.allowed_dirs

    # Import server after setting environment
    from .server import create_server

    mcp = create_server(args.server_url)

    if args.transport == "stdio":
        # Standard STDIO transport (default)
        mcp.run()

    elif args.transport == "sse":
        # SSE transport
        try:
            from mcp.server.sse import SseServerTransport
            from starlette.applications import Starlette
            from starlette.routing import Mount, Route
            import uvicorn

            sse = SseServerTransport("/messages/")

            async def handle_sse(request):
                async with sse.connect_sse(
                    request.scope, request.receive, request._send
                ) as streams:
                    await mcp._mcp_server.run(
                        streams[0], streams[1], mcp._mcp_server.create_initialization_options()
                    )

            app = Starlette(
                routes=[
                    Route("/sse", endpoint=handle_sse),
                    Mount("/messages/", app=sse.handle_post_message),
                ],
            )

            print(f"Starting SSE server on {args.host}:{args.port}", file=sys.stderr)
            print(f"SSE endpoint: http://{args.host}:{args.port}/sse", file=sys.stderr)
            uvicorn.run(app, host=args.host, port=args.port)

        except ImportError as e:
            print(f"Error: SSE transport requires additional dependencies: {e}", file=sys.stderr)
            print("Install with: pip install 'plantuml-mcp[sse]'", file=sys.stderr)
            sys.exit(1)

    elif args.transport == "http":
        # Streamable HTTP transport
        try:
            import uvicorn

            app = mcp.streamable_http_app()

            print(f"Starting HTTP server on {args.host}:{args.port}", file=sys.stderr)
            print(f"MCP endpoint: http://{args.host}:{args.port}{mcp.settings.streamable_http_path}", file=sys.stderr)
            uvicorn.run(app, host=args.host, port=args.port)

        except ImportError as e:
            print(f"Error: HTTP transport requires additional dependencies: {e}", file=sys.stderr)
            print("Install with: pip install 'plantuml-mcp[http]'", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
