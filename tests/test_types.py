from __future__ import annotations

from mcp_servers.web_browser.types import ToolResult


def test_ok_result() -> None:
    result = ToolResult.ok({"title": "Example"})
    assert result.to_dict() == {"success": True, "data": {"title": "Example"}}
    assert result.to_content_list() == [{"type": "text", "text": '{\n  "title": "Example"\n}'}]


def test_ok_string_is_rendered_verbatim() -> None:
    assert ToolResult.ok("plain").to_content_list() == [{"type": "text", "text": "plain"}]


def test_failure_result() -> None:
    result = ToolResult.failure("Request timeout")
    assert result.success is False
    assert result.to_dict() == {"success": False, "error": "Request timeout"}
    assert result.to_content_list() == [{"type": "text", "text": "Error: Request timeout"}]


def test_failure_without_message() -> None:
    assert ToolResult.failure("").error == "Unknown error"
