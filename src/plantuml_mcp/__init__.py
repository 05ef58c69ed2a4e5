"""
PlantUML MCP
============

MCP server for PlantUML diagram generation.

Supports:
- Generating: SVG/PNG diagram URLs from PlantUML source
- Validating: syntax errors reported back in an auto-fixable form
- Saving: rendered diagrams to sandboxed local paths
- Encoding/decoding: PlantUML URL tokens

Transport modes:
- STDIO (default): For Claude Desktop and other MCP clients
- SSE: Server-Sent Events over HTTP
- HTTP: Streamable HTTP transport
"""

__version__ = "0.2.0"

from .encoding import DecodeError, decode_plantuml, encode_plantuml
from .sandbox import AllowListPolicy, PathDecision, is_path_allowed
from .server import create_server, mcp

__all__ = [
    "AllowListPolicy",
    "DecodeError",
    "PathDecision",
    "create_server",
    "decode_plantuml",
    "encode_plantuml",
    "is_path_allowed",
    "mcp",
    "__version__",
]
