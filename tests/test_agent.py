"""Tests for the agent loop, driven by a scripted stand-in for the chat client."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from skillshell.agent import AgentRun, build_client, run_agent
from skillshell.config import Settings
from skillshell.tools import create_skill_toolset


def _call(call_id, name, arguments):
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def _response(content=None, tool_calls=None, tokens=10):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(total_tokens=tokens),
    )


class FakeCompletions:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def create(self, model, messages, tools):
        self.requests.append({"model": model, "messages": [dict(m) for m in messages], "tools": tools})
        return self.responses.pop(0)


class FakeClient:
    def __init__(self, responses):
        self.completions = FakeCompletions(responses)
        self.chat = SimpleNamespace(completions=self.completions)


class TestRunAgent:
    def test_answer_without_tools(self, toolset):
        client = FakeClient([_response("All done.", tokens=7)])
        run = run_agent("hello", toolset, client=client)
        assert isinstance(run, AgentRun)
        assert run.text == "All done."
        assert len(run.steps) == 1
        assert run.total_tokens == 7

    def test_system_message_lists_skills(self, toolset):
        client = FakeClient([_response("ok")])
        run_agent("hello", toolset, instructions="Be brief.", model="test-model", client=client)
        request = client.completions.requests[0]
        assert request["model"] == "test-model"
        system = request["messages"][0]
        assert system["role"] == "system"
        assert system["content"].startswith("Be brief.")
        assert "location: /skills/csv/" in system["content"]
        assert [tool["function"]["name"] for tool in request["tools"]] == [
            "skill",
            "bash",
            "readFile",
            "writeFile",
        ]

    def test_system_message_uses_sandbox_destination(self, workspace, bundled_skills):
        toolset = create_skill_toolset(bundled_skills, workspace, destination="/sandbox", timeout=5)
        client = FakeClient([_response("ok")])
        run_agent("hello", toolset, client=client)
        system = client.completions.requests[0]["messages"][0]["content"]
        assert "/sandbox/skills/<skill-name>/" in system
        assert "location: /sandbox/skills/csv/" in system

    def test_sales_flow(self, toolset, sales_csv):
        client = FakeClient(
            [
                _response(tool_calls=[_call("c1", "writeFile", {"path": "/sales.csv", "content": sales_csv})]),
                _response(tool_calls=[_call("c2", "skill", {"skillName": "csv"})]),
                _response(
                    tool_calls=[
                        _call(
                            "c3",
                            "bash",
                            {"command": "sh /skills/csv/scripts/filter.sh /sales.csv region North > /north.csv"},
                        ),
                        _call("c4", "bash", {"command": "sh /skills/csv/scripts/sort.sh /north.csv quantity desc"}),
                    ]
                ),
                _response("North rows sorted by quantity.", tokens=5),
            ]
        )
        seen = []
        run = run_agent("sort the sales", toolset, client=client, on_step=seen.append)

        assert run.text == "North rows sorted by quantity."
        assert [step.index for step in seen] == [1, 2, 3, 4]
        assert run.total_tokens == 35
        assert run.steps[1].tool_calls[0].result["location"] == "/skills/csv"
        sorted_output = run.steps[2].tool_calls[1].result["stdout"]
        assert [line.split(",")[2] for line in sorted_output.splitlines()[1:]] == ["200", "150", "100"]

        # The last request carries every tool result back to the model.
        messages = client.completions.requests[-1]["messages"]
        tool_messages = [m for m in messages if m["role"] == "tool"]
        assert [m["tool_call_id"] for m in tool_messages] == ["c1", "c2", "c3", "c4"]
        assert json.loads(tool_messages[0]["content"]) == {"path": "/sales.csv", "success": True}
        assistant = [m for m in messages if m["role"] == "assistant"]
        assert assistant[2]["tool_calls"][1]["function"]["name"] == "bash"

    def test_malformed_call_becomes_error_result(self, toolset):
        client = FakeClient(
            [
                _response(tool_calls=[_call("c1", "bash", "{not json")]),
                _response(tool_calls=[_call("c2", "nope", {})]),
                _response("gave up"),
            ]
        )
        run = run_agent("x", toolset, client=client)
        first = run.steps[0].tool_calls[0]
        assert "error" in first.result
        assert first.arguments == {"_raw": "{not json"}
        assert "unknown tool" in run.steps[1].tool_calls[0].result["error"]
        assert run.text == "gave up"

    def test_handler_failure_becomes_error_result(self, toolset, monkeypatch):
        def broken(command):
            raise UnicodeEncodeError("utf-8", "\ud800", 0, 1, "surrogates not allowed")

        monkeypatch.setattr(toolset.sandbox, "execute_command", broken)
        client = FakeClient(
            [
                _response(tool_calls=[_call("c1", "bash", {"command": "echo hi"})]),
                _response("recovered"),
            ]
        )
        run = run_agent("x", toolset, client=client)
        assert "failed" in run.steps[0].tool_calls[0].result["error"]
        assert run.text == "recovered"
        assert toolset.state.value == "ready"

    def test_max_steps_bounds_the_loop(self, toolset):
        client = FakeClient(
            [_response(f"step {i}", tool_calls=[_call(f"c{i}", "bash", {"command": "true"})]) for i in range(5)]
        )
        run = run_agent("loop", toolset, client=client, max_steps=3)
        assert len(run.steps) == 3
        assert run.text == "step 2"
        assert len(client.completions.responses) == 2

    def test_missing_usage_counts_zero(self, toolset):
        response = _response("ok")
        response.usage = None
        run = run_agent("x", toolset, client=FakeClient([response]))
        assert run.total_tokens == 0

    def test_client_required(self, toolset):
        with pytest.raises(ValueError):
            run_agent("x", toolset)

    def test_client_errors_propagate(self, toolset):
        class Boom:
            def create(self, **kwargs):
                raise ConnectionError("offline")

        client = SimpleNamespace(chat=SimpleNamespace(completions=Boom()))
        with pytest.raises(ConnectionError):
            run_agent("x", toolset, client=client)


class TestBuildClient:
    def test_requires_api_key(self):
        with pytest.raises(RuntimeError):
            build_client(Settings())

    def test_uses_base_url(self):
        client = build_client(Settings(llm_api_key="sk-test", llm_base_url="https://example.invalid/v1"))
        assert str(client.base_url).startswith("https://example.invalid/v1")
