#!/usr/bin/env python3
"""Tests for the PlantUML MCP tools against a mocked PlantUML server."""

import sys
sys.path.insert(0, 'src')

import json
import os

import httpx
import pytest

from plantuml_mcp import server
from plantuml_mcp.encoding import encode_plantuml
from plantuml_mcp.server import (
    decode_plantuml,
    generate_plantuml_diagram,
    mcp,
)

SERVER_URL = "http://plantuml.test/plantuml"

SIMPLE_DIAGRAM = """@startuml
Alice -> Bob: Hello
Bob --> Alice: Hi
@enduml"""

INVALID_DIAGRAM = """@startuml
Bob -> Alice : Hello
invalid_syntax_here
@enduml"""

SVG_BYTES = b'<svg xmlns="http://www.w3.org/2000/svg"><text>Alice</text></svg>'


class FakePlantUML:
    """Stand-in for the PlantUML server, recording requested paths."""

    def __init__(self, error=None, error_line=None, render_status=200, fail_validation=False):
        self.error = error
        self.error_line = error_line
        self.render_status = render_status
        self.fail_validation = fail_validation
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request.url.path)
        kind = request.url.path.split('/')[-2]
        if kind == 'txt':
            if self.fail_validation:
                raise httpx.ConnectError("connection refused", request=request)
            headers = {}
            if self.error:
                headers["X-PlantUML-Diagram-Error"] = self.error
                if self.error_line is not None:
                    headers["X-PlantUML-Diagram-Error-Line"] = str(self.error_line)
            return httpx.Response(200, headers=headers, text="ASCII art output\nSyntax Error?")
        if self.render_status != 200:
            return httpx.Response(self.render_status)
        content_type = "image/svg+xml" if kind == 'svg' else "image/png"
        body = SVG_BYTES if kind == 'svg' else b"\x89PNG\r\n\x1a\nfake"
        return httpx.Response(200, headers={"Content-Type": content_type}, content=body)


@pytest.fixture(autouse=True)
def environment(tmp_path, monkeypatch):
    monkeypatch.setenv("PLANTUML_SERVER_URL", SERVER_URL + "/")
    monkeypatch.delenv("PLANTUML_ALLOWED_DIRS", raising=False)
    monkeypatch.delenv("PLANTUML_HTTP_TIMEOUT", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def plantuml(monkeypatch):
    fake = FakePlantUML()
    monkeypatch.setattr(
        server, "_http_client",
        lambda: httpx.AsyncClient(transport=httpx.MockTransport(fake)),
    )
    return fake


class TestGenerateDiagram:
    @pytest.mark.asyncio
    async def test_returns_url_and_embed(self, plantuml):
        result = json.loads(await generate_plantuml_diagram(SIMPLE_DIAGRAM))

        encoded = encode_plantuml(SIMPLE_DIAGRAM)
        assert result["success"] is True
        assert result["format"] == "svg"
        assert result["url"] == f"{SERVER_URL}/svg/{encoded}"
        assert result["markdown_embed"] == f"![PlantUML Diagram]({SERVER_URL}/svg/{encoded})"
        assert plantuml.requests == [f"/plantuml/txt/{encoded}", f"/plantuml/svg/{encoded}"]

    @pytest.mark.asyncio
    async def test_png_format(self, plantuml):
        result = json.loads(await generate_plantuml_diagram(SIMPLE_DIAGRAM, format="png"))
        assert result["url"].startswith(f"{SERVER_URL}/png/")

    @pytest.mark.asyncio
    async def test_requires_code(self, plantuml):
        result = json.loads(await generate_plantuml_diagram(""))
        assert result == {"error": "plantuml_code is required"}
        assert plantuml.requests == []

    @pytest.mark.asyncio
    async def test_syntax_error_details(self, plantuml):
        plantuml.error = "Syntax Error?"
        plantuml.error_line = 3

        result = json.loads(await generate_plantuml_diagram(INVALID_DIAGRAM))

        assert result["validation_failed"] is True
        details = result["error_details"]
        assert details["error_message"] == "Syntax Error?"
        assert details["error_line"] == 3
        assert details["problematic_code"] == "invalid_syntax_here"
        assert details["full_plantuml"] == INVALID_DIAGRAM
        assert "ASCII art output" in details["full_context"]
        assert "retry" in result["retry_instructions"]
        # No render request after a failed validation
        assert len(plantuml.requests) == 1

    @pytest.mark.asyncio
    async def test_syntax_error_without_line(self, plantuml):
        plantuml.error = "No @startuml found"

        result = json.loads(await generate_plantuml_diagram("Alice -> Bob"))

        assert result["error_details"]["error_line"] is None
        assert result["error_details"]["problematic_code"] == ""

    @pytest.mark.asyncio
    async def test_syntax_error_line_out_of_range(self, plantuml):
        plantuml.error = "Syntax Error?"
        plantuml.error_line = 42

        result = json.loads(await generate_plantuml_diagram(INVALID_DIAGRAM))

        assert result["error_details"]["error_line"] == 42
        assert result["error_details"]["problematic_code"] == ""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", ["3 ", " 3", "3abc"])
    async def test_syntax_error_line_leading_integer(self, plantuml, header):
        plantuml.error = "Syntax Error?"
        plantuml.error_line = header

        result = json.loads(await generate_plantuml_diagram(INVALID_DIAGRAM))

        assert result["error_details"]["error_line"] == 3
        assert result["error_details"]["problematic_code"] == "invalid_syntax_here"

    @pytest.mark.asyncio
    async def test_syntax_error_line_not_a_number(self, plantuml):
        plantuml.error = "Syntax Error?"
        plantuml.error_line = "unknown"

        result = json.loads(await generate_plantuml_diagram(INVALID_DIAGRAM))

        assert result["error_details"]["error_line"] is None
        assert result["error_details"]["problematic_code"] == ""

    @pytest.mark.asyncio
    async def test_validation_failure_is_skipped(self, plantuml):
        plantuml.fail_validation = True

        result = json.loads(await generate_plantuml_diagram(SIMPLE_DIAGRAM))

        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_render_error_status(self, plantuml):
        plantuml.render_status = 503

        result = json.loads(await generate_plantuml_diagram(SIMPLE_DIAGRAM))

        assert result["error"] == (
            "Error generating PlantUML diagram: PlantUML server returned 503: Service Unavailable"
        )


class TestSaveDiagram:
    @pytest.mark.asyncio
    async def test_saves_svg(self, plantuml, environment):
        result = json.loads(await generate_plantuml_diagram(
            SIMPLE_DIAGRAM, output_path="out/test-save.svg"
        ))

        saved = environment / "out" / "test-save.svg"
        assert result["success"] is True
        assert result["local_path"] == str(saved)
        assert result["message"] == f"Diagram saved successfully to: {saved}"
        assert saved.read_bytes() == SVG_BYTES

    @pytest.mark.asyncio
    async def test_saves_png_in_nested_directories(self, plantuml, environment):
        result = json.loads(await generate_plantuml_diagram(
            SIMPLE_DIAGRAM, format="png", output_path="nested/deep/diagram.png"
        ))

        saved = environment / "nested" / "deep" / "diagram.png"
        assert result["format"] == "png"
        assert saved.read_bytes().startswith(b"\x89PNG")

    @pytest.mark.asyncio
    async def test_appends_missing_extension(self, plantuml, environment):
        result = json.loads(await generate_plantuml_diagram(
            SIMPLE_DIAGRAM, format="png", output_path="diagram"
        ))

        assert result["local_path"] == str(environment / "diagram.png")
        assert (environment / "diagram.png").exists()

    @pytest.mark.asyncio
    async def test_rejects_wrong_extension(self, plantuml, environment):
        result = json.loads(await generate_plantuml_diagram(
            SIMPLE_DIAGRAM, output_path="diagram.txt"
        ))

        assert result["error"].startswith("Security error: Invalid extension")
        assert not (environment / "diagram.txt").exists()

    @pytest.mark.asyncio
    async def test_rejects_path_outside_cwd(self, plantuml, environment):
        outside = environment.parent / "outside" / "diagram.svg"

        result = json.loads(await generate_plantuml_diagram(
            SIMPLE_DIAGRAM, output_path=str(outside)
        ))

        assert "outside allowed directories" in result["error"]
        assert not outside.exists()

    @pytest.mark.asyncio
    async def test_allowed_dirs_from_environment(self, plantuml, environment, monkeypatch):
        extra = environment.parent / f"{environment.name}-extra"
        monkeypatch.setenv("PLANTUML_ALLOWED_DIRS", str(extra))

        result = json.loads(await generate_plantuml_diagram(
            SIMPLE_DIAGRAM, output_path=str(extra / "diagram.svg")
        ))

        assert result["success"] is True
        assert (extra / "diagram.svg").read_bytes() == SVG_BYTES

    @pytest.mark.asyncio
    async def test_write_failure(self, plantuml, environment):
        (environment / "blocker").write_text("not a directory")

        result = json.loads(await generate_plantuml_diagram(
            SIMPLE_DIAGRAM, output_path="blocker/diagram.svg"
        ))

        assert result["error"].startswith("Error saving diagram to file:")
        assert result["url"].startswith(f"{SERVER_URL}/svg/")


class TestEncodeDecodeTools:
    def test_encode(self):
        result = json.loads(server.encode_plantuml(SIMPLE_DIAGRAM))

        encoded = encode_plantuml(SIMPLE_DIAGRAM)
        assert result["encoded"] == encoded
        assert result["urls"] == {
            "svg": f"{SERVER_URL}/svg/{encoded}",
            "png": f"{SERVER_URL}/png/{encoded}",
        }

    def test_encode_requires_code(self):
        assert json.loads(server.encode_plantuml("")) == {"error": "plantuml_code is required"}

    def test_decode(self):
        result = json.loads(decode_plantuml(encode_plantuml(SIMPLE_DIAGRAM)))
        assert result == {"decoded": SIMPLE_DIAGRAM}

    def test_decode_requires_string(self):
        assert json.loads(decode_plantuml("")) == {"error": "encoded_string is required"}

    def test_decode_corrupt_string(self):
        result = json.loads(decode_plantuml("____________"))
        assert result["error"].startswith("Error decoding PlantUML:")


class TestServerSurface:
    @pytest.mark.asyncio
    async def test_lists_tools(self):
        tools = {tool.name: tool for tool in await mcp.list_tools()}

        assert set(tools) == {"generate_plantuml_diagram", "encode_plantuml", "decode_plantuml"}
        schema = tools["generate_plantuml_diagram"].inputSchema
        assert schema["required"] == ["plantuml_code"]
        assert schema["properties"]["format"]["enum"] == ["svg", "png"]

    @pytest.mark.asyncio
    async def test_error_handling_prompt(self):
        prompts = await mcp.list_prompts()
        assert [p.name for p in prompts] == ["plantuml_error_handling"]

        result = await mcp.get_prompt("plantuml_error_handling")
        assert [m.role for m in result.messages] == ["user", "assistant"]
        assert "validation_failed" in result.messages[1].content.text

    def test_create_server_sets_url(self, monkeypatch):
        assert server.create_server("http://localhost:8080/plantuml/") is mcp
        assert os.environ["PLANTUML_SERVER_URL"] == "http://localhost:8080/plantuml/"
        assert server._server_url() == "http://localhost:8080/plantuml"

    def test_invalid_timeout_falls_back(self, monkeypatch):
        monkeypatch.setenv("PLANTUML_HTTP_TIMEOUT", "soon")
        assert server._http_timeout() == server.DEFAULT_HTTP_TIMEOUT
        monkeypatch.setenv("PLANTUML_HTTP_TIMEOUT", "5")
        assert server._http_timeout() == 5.0
