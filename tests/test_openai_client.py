"""Tests for the chat-completions client: payload building and parsing."""

import json

import pytest

from scribe_agent.agent.prompts import PromptBuilder
from scribe_agent.api.model_api import ModelApiError, ModelRequest, ModelResponse
from scribe_agent.api.openai_client import OpenAICompatibleClient, history_to_messages
from scribe_agent.config import Settings
from scribe_agent.session_manager import ContextFile
from scribe_agent.tools.registry import ToolDefinition


def _completion(content=None, tool_calls=None):
    return {"choices": [{"message": {"content": content, "tool_calls": tool_calls}}]}


class TestParseResponse:
    def test_text_only(self):
        response = OpenAICompatibleClient.parse_response(_completion("Hello"))
        assert response == ModelResponse(markdown="Hello")

    def test_tool_calls(self):
        raw = _completion(
            None,
            [
                {
                    "id": "call_abc",
                    "type": "function",
                    "function": {"name": "read_file", "arguments": '{"path": "a.md"}'},
                }
            ],
        )

        response = OpenAICompatibleClient.parse_response(raw)

        assert response.markdown == ""
        assert len(response.tool_calls) == 1
        call = response.tool_calls[0]
        assert (call.name, dict(call.arguments), call.id) == ("read_file", {"path": "a.md"}, "call_abc")

    def test_malformed_arguments(self):
        raw = _completion(None, [{"function": {"name": "read_file", "arguments": "{nope"}}])

        with pytest.raises(ModelApiError, match="Malformed arguments"):
            OpenAICompatibleClient.parse_response(raw)

    def test_no_choices(self):
        with pytest.raises(ModelApiError):
            OpenAICompatibleClient.parse_response({"choices": []})

    def test_unexpected_payload(self):
        with pytest.raises(ModelApiError):
            OpenAICompatibleClient.parse_response({"error": {"message": "quota"}})


class TestHistoryToMessages:
    def test_text_turns(self):
        history = [
            {"role": "user", "parts": [{"text": "hi"}]},
            {"role": "model", "parts": [{"text": "hello"}]},
        ]

        assert history_to_messages(history) == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_function_call_round(self):
        history = [
            {
                "role": "model",
                "parts": [
                    {"text": "Checking."},
                    {"functionCall": {"name": "read_file", "args": {"path": "a.md"}, "id": "call_1_0"}},
                    {"functionCall": {"name": "list_files", "args": {"path": ""}}},
                ],
            },
            {
                "role": "user",
                "parts": [
                    {"functionResponse": {"name": "read_file", "id": "call_1_0", "response": {"success": True}}},
                    {"functionResponse": {"name": "list_files", "response": {"success": False, "error": "x"}}},
                ],
            },
        ]

        assistant, first, second = history_to_messages(history)

        assert assistant["role"] == "assistant"
        assert assistant["content"] == "Checking."
        assert [call["id"] for call in assistant["tool_calls"]] == ["call_1_0", "call_0_1"]
        assert json.loads(assistant["tool_calls"][0]["function"]["arguments"]) == {"path": "a.md"}
        assert first == {"role": "tool", "tool_call_id": "call_1_0", "content": '{"success": true}'}
        # missing id falls back to the matching call by name
        assert second["tool_call_id"] == "call_0_1"


class TestBuildBody:
    def test_body_contains_prompt_history_and_tools(self):
        client = OpenAICompatibleClient(Settings(temperature=0.3, top_p=0.9))
        tool = ToolDefinition("read_file", "Read a file", {"type": "object", "properties": {}, "required": []})
        request = ModelRequest(
            prompt="system",
            user_message="question",
            conversation_history=[{"role": "user", "parts": [{"text": "earlier"}]}],
            available_tools=[tool],
            custom_prompt="Answer in French.",
        )

        body = client._build_body(request, "gpt-test")

        assert body["model"] == "gpt-test"
        assert body["messages"] == [
            {"role": "system", "content": "system\n\nAnswer in French."},
            {"role": "user", "content": "earlier"},
            {"role": "user", "content": "question"},
        ]
        assert (body["temperature"], body["top_p"]) == (0.3, 0.9)
        assert body["tools"] == [{"type": "function", "function": tool.to_dict()}]

    def test_empty_user_message_and_no_tools(self):
        body = OpenAICompatibleClient(Settings())._build_body(ModelRequest(prompt="p"), "m")

        assert body["messages"] == [{"role": "system", "content": "p"}]
        assert "tools" not in body

    def test_model_fallback(self, monkeypatch):
        client = OpenAICompatibleClient(Settings(llm_models=("first", "second")))
        tried = []

        def fake_post(body):
            tried.append(body["model"])
            if body["model"] == "first":
                raise ModelApiError("Model endpoint returned HTTP 404")
            return _completion("from second")

        monkeypatch.setattr(client, "_post", fake_post)

        response = client._complete(ModelRequest(user_message="hi"))

        assert tried == ["first", "second"]
        assert response.markdown == "from second"


class TestPromptBuilder:
    def test_lists_tools_and_memory(self):
        tools = [ToolDefinition("read_file", "Read a file")]

        prompt = PromptBuilder().system_prompt(tools, memory="Journal lives in Daily/")

        assert "- read_file: Read a file" in prompt
        assert "Journal lives in Daily/" in prompt

    def test_without_tools(self):
        prompt = PromptBuilder().system_prompt([])
        assert "No tools are available" in prompt
        assert "Vault memory" not in prompt

    def test_custom_template(self):
        prompt = PromptBuilder().system_prompt([], template="{{ tools | length }} tools")
        assert prompt == "0 tools"

    def test_context_files(self):
        files = [ContextFile("Projects/Plan.md", "Ship it"), ContextFile("Long.md", "abc", truncated=True)]

        prompt = PromptBuilder().system_prompt([], context_files=files)

        assert "## Context files" in prompt
        assert "### Projects/Plan.md\nShip it" in prompt
        assert "### Long.md\nabc\n[truncated]" in prompt
