#!/usr/bin/env python3
"""
PlantUML MCP - Server Implementation
====================================

Provides tools to generate, encode and decode PlantUML diagrams through a
PlantUML rendering server.

Tools:
- generate_plantuml_diagram: Validate syntax, return an embeddable URL and
  optionally save the rendered SVG/PNG locally
- encode_plantuml: Encode PlantUML source for URL usage
- decode_plantuml: Decode an encoded string back to PlantUML source

Prompts:
- plantuml_error_handling: Auto-fix workflow for syntax errors

Environment:
- PLANTUML_SERVER_URL: Rendering server (default: public plantuml.com)
- PLANTUML_ALLOWED_DIRS: Extra output directories, colon-separated, or "*"
- PLANTUML_HTTP_TIMEOUT: Seconds per request to the rendering server
"""

import json
import logging
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Literal, Optional

import httpx
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.prompts.base import AssistantMessage, Message, UserMessage
from pydantic import Field

from .encoding import DecodeError, decode_plantuml as _decode, encode_plantuml as _encode
from .sandbox import is_path_allowed

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://www.plantuml.com/plantuml"
DEFAULT_HTTP_TIMEOUT = 30.0

ERROR_HEADER = "x-plantuml-diagram-error"
ERROR_LINE_HEADER = "x-plantuml-diagram-error-line"
LINE_NUMBER_RE = re.compile(r"\s*([+-]?\d+)")

RETRY_INSTRUCTIONS = (
    "The PlantUML code has syntax errors. "
    "Please fix the errors and retry with corrected syntax."
)


def _server_url() -> str:
    """Rendering server base URL, read from the environment on every call."""
    return os.environ.get("PLANTUML_SERVER_URL", DEFAULT_SERVER_URL).rstrip('/')


def _http_timeout() -> float:
    value = os.environ.get("PLANTUML_HTTP_TIMEOUT")
    if not value:
        return DEFAULT_HTTP_TIMEOUT
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring invalid PLANTUML_HTTP_TIMEOUT=%r", value)
        return DEFAULT_HTTP_TIMEOUT


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=_http_timeout(), follow_redirects=True)


@asynccontextmanager
async def server_lifespan(server: FastMCP):
    """Log configuration on startup."""
    logger.info("Using PlantUML server %s", _server_url())
    yield


# Initialize the MCP server
mcp = FastMCP("plantuml-server", lifespan=server_lifespan)


def create_server(server_url: Optional[str] = None) -> FastMCP:
    """Create and return the MCP server instance.

    Args:
        server_url: Optional PlantUML server URL overriding the environment
    """
    if server_url:
        os.environ["PLANTUML_SERVER_URL"] = server_url
    return mcp


# ============================================================================
# Syntax Validation
# ============================================================================

async def _validate_syntax(client: httpx.AsyncClient, encoded: str, source: str) -> Optional[dict]:
    """Ask the server's /txt endpoint for PlantUML's own error report.

    Returns error details when PlantUML flags the diagram, otherwise None.
    """
    url = f"{_server_url()}/txt/{encoded}"
    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        # The render request that follows reports real connectivity problems
        logger.warning("Syntax validation request failed, skipping: %s", e)
        return None

    error_message = response.headers.get(ERROR_HEADER)
    if not error_message:
        return None

    # Leading integer only, so "3 " and "3abc" both read as line 3
    match = LINE_NUMBER_RE.match(response.headers.get(ERROR_LINE_HEADER) or '')
    line_num = int(match.group(1)) if match else None

    lines = source.split('\n')
    problematic = ''
    if line_num and 1 <= line_num <= len(lines):
        problematic = lines[line_num - 1].strip()

    logger.info("PlantUML reported a syntax error on line %s: %s", line_num, error_message)
    return {
        "error_message": error_message,
        "error_line": line_num,
        "problematic_code": problematic,
        "full_plantuml": source,
        "full_context": response.text,
    }


# ============================================================================
# Local Output
# ============================================================================

def _output_file(output_path: str, fmt: str) -> Path:
    """Absolute output path, with the format extension appended if missing."""
    file_path = Path(os.path.abspath(output_path))
    if not file_path.suffix:
        file_path = file_path.with_name(f"{file_path.name}.{fmt}")
    return file_path


# ============================================================================
# Diagram Generation Tool
# ============================================================================

@mcp.tool()
async def generate_plantuml_diagram(
    plantuml_code: Annotated[str, Field(description="PlantUML diagram code. Will be automatically validated for syntax errors before generating the diagram URL.")],
    format: Annotated[Literal["svg", "png"], Field(description="Output image format (SVG or PNG)")] = "svg",
    output_path: Annotated[Optional[str], Field(description="Optional. Path to save diagram locally. Restricted to current working directory by default. Set PLANTUML_ALLOWED_DIRS env var (colon-separated paths, or \"*\" for unrestricted) to allow additional directories. Only .svg and .png extensions permitted.")] = None,
) -> str:
    """Generate a PlantUML diagram with automatic syntax validation.

    Returns embeddable image URLs for valid diagrams, or structured error
    details for invalid syntax that can be corrected automatically and
    retried. Optionally saves the rendered diagram to a local file.

    Args:
        plantuml_code: PlantUML source
        format: "svg" (default) or "png"
        output_path: Optional local file to write the rendered image to

    Returns:
        JSON string with the diagram URL, the saved path, or error details
    """
    if not plantuml_code:
        return json.dumps({"error": "plantuml_code is required"})

    try:
        encoded = _encode(plantuml_code)

        async with _http_client() as client:
            error = await _validate_syntax(client, encoded, plantuml_code)
            if error:
                return json.dumps({
                    "validation_failed": True,
                    "error_details": error,
                    "retry_instructions": RETRY_INSTRUCTIONS,
                }, indent=2)

            diagram_url = f"{_server_url()}/{format}/{encoded}"
            response = await client.get(diagram_url)

        if not response.is_success:
            raise ValueError(
                f"PlantUML server returned {response.status_code}: {response.reason_phrase}"
            )

    except (ValueError, httpx.HTTPError) as e:
        logger.error("Diagram generation failed: %s", e)
        return json.dumps({"error": f"Error generating PlantUML diagram: {str(e)}"})

    if not output_path:
        return json.dumps({
            "success": True,
            "url": diagram_url,
            "format": format,
            "markdown_embed": f"![PlantUML Diagram]({diagram_url})",
        }, indent=2)

    file_path = _output_file(output_path, format)

    decision = is_path_allowed(str(file_path))
    if not decision.allowed:
        logger.warning("Refused to write %s: %s", file_path, decision.reason)
        return json.dumps({"error": f"Security error: {decision.reason}"})

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(response.content)
    except OSError as e:
        logger.error("Could not save diagram to %s: %s", file_path, e)
        return json.dumps({
            "error": f"Error saving diagram to file: {str(e)}",
            "url": diagram_url,
        }, indent=2)

    logger.info("Saved %s diagram to %s", format, file_path)
    return json.dumps({
        "success": True,
        "local_path": str(file_path),
        "format": format,
        "url": diagram_url,
        "message": f"Diagram saved successfully to: {file_path}",
    }, indent=2)


# ============================================================================
# Encoding Tools
# ============================================================================

@mcp.tool()
def encode_plantuml(
    plantuml_code: Annotated[str, Field(description="PlantUML diagram code to encode")],
) -> str:
    """Encode PlantUML code for URL usage.

    Returns:
        JSON string with the encoded string and SVG/PNG URLs
    """
    if not plantuml_code:
        return json.dumps({"error": "plantuml_code is required"})

    encoded = _encode(plantuml_code)
    server_url = _server_url()
    return json.dumps({
        "encoded": encoded,
        "urls": {
            "svg": f"{server_url}/svg/{encoded}",
            "png": f"{server_url}/png/{encoded}",
        },
    }, indent=2)


@mcp.tool()
def decode_plantuml(
    encoded_string: Annotated[str, Field(description="Encoded PlantUML string to decode")],
) -> str:
    """Decode encoded PlantUML string back to PlantUML code."""
    if not encoded_string:
        return json.dumps({"error": "encoded_string is required"})

    try:
        decoded = _decode(encoded_string)
    except DecodeError as e:
        return json.dumps({"error": f"Error decoding PlantUML: {str(e)}"})

    return json.dumps({"decoded": decoded}, indent=2)


# ============================================================================
# Prompts
# ============================================================================

ERROR_HANDLING_GUIDE = """## PlantUML MCP Server - Error Handling & Auto-Fix Guide

### Error Detection Workflow
1. **Always attempt generation first** - Call `generate_plantuml_diagram` with your PlantUML code
2. **Check response format** - Look for JSON responses containing `"validation_failed": true`
3. **Parse error details** - Extract specific error information for intelligent fixes
4. **Auto-fix and retry** - Correct syntax based on error context and retry once
5. **Maximum retry limit** - Attempt auto-fix maximum 2 times before showing user the error

### Response Format Recognition

**Success Response (JSON):**
- `"success": true` with `url`, `format` and `markdown_embed`
- With `output_path`: `local_path` of the saved file instead of `markdown_embed`

**Validation Error Response (JSON):**
```json
{
  "validation_failed": true,
  "error_details": {
    "error_message": "Syntax Error description",
    "error_line": 3,
    "problematic_code": "invalid syntax line",
    "full_plantuml": "complete original code",
    "full_context": "detailed error context"
  },
  "retry_instructions": "Fix errors and retry"
}
```

**Server or File Error Response (JSON):**
- `{"error": "..."}` for connectivity problems, rejected output paths or write failures

### Common PlantUML Syntax Fixes

**Missing Tags:**
- Error: "No @startuml found"
- Fix: Add `@startuml` at start and `@enduml` at end

**Invalid Arrow Syntax:**
- Error: "Syntax Error" on arrow lines
- Fix: Use `->` instead of `>`, `-->` for dashed arrows

**Typos in Keywords:**
- Error: "Unknown keyword"
- Fix: Check spelling of `participant`, `class`, `note`, etc.

**Missing Quotes:**
- Error: Syntax error on strings with spaces
- Fix: Add quotes around strings containing spaces

**Diagram Type Issues:**
- Error: "Assumed diagram type: sequence"
- Fix: Use appropriate syntax for intended diagram type

### Auto-Fix Implementation Strategy

1. **Parse the error_line and problematic_code** from the validation response
2. **Apply common fixes** based on error_message patterns:
   - Add missing @startuml/@enduml tags
   - Fix arrow syntax (replace > with ->)
   - Add missing quotes around spaced strings
   - Correct common keyword typos
3. **Preserve user intent** - Keep original meaning while fixing syntax
4. **Retry with fixed code** - Call generate_plantuml_diagram again
5. **Explain fixes made** - Inform user what was corrected

### Saving Diagrams Locally

- `output_path` must end in `.svg` or `.png` (the format extension is added when missing)
- Paths must stay inside the current working directory unless `PLANTUML_ALLOWED_DIRS` allows more
- A `Security error` names the rejected path and the allowed directories; pick a path inside one of them

### Best Practices

- **Validate before presenting URLs** - Don't show broken diagram links
- **Use specific error context** - Leverage line numbers and error messages
- **Maintain diagram semantics** - Keep user's intended diagram structure
- **Handle edge cases gracefully** - Some errors may require manual intervention
- **Provide clear feedback** - Explain what was fixed when auto-correcting
"""


@mcp.prompt(
    name="plantuml_error_handling",
    description="Guidelines for handling PlantUML syntax errors and implementing auto-fix workflows",
)
def plantuml_error_handling() -> list[Message]:
    """PlantUML Error Handling and Auto-Fix Guidelines."""
    return [
        UserMessage(
            "How should I handle PlantUML syntax errors when generating diagrams "
            "with the PlantUML MCP server?"
        ),
        AssistantMessage(ERROR_HANDLING_GUIDE),
    ]
