"""Tests for the agent loop."""

from __future__ import annotations

import httpx
import pytest

from miniagent.llm.token_counter import TokenCounter
from miniagent.llm.types import (
    AssistantMessage,
    StreamChunk,
    SystemMessage,
    TextSegment,
    ToolMessage,
    UserMessage,
)
from miniagent.orchestrator.core import Agent, build_system_prompt, format_tool_result
from miniagent.tools.registry import ToolRegistry
from miniagent.types import ErrorCode, ToolResult
from tests.mock_providers import (
    ScriptedClient,
    multi_tool_call_turn,
    text_turn,
    tool_call_turn,
)
from tests.mock_tools import (
    EchoTool,
    FailingTool,
    RaisingTool,
    SlowTool,
    WriteTool,
)


@pytest.fixture
def registry():
    reg = ToolRegistry()
    reg.register(EchoTool())
    reg.register(WriteTool())
    reg.register(FailingTool())
    reg.register(RaisingTool())
    return reg


def _agent(client, registry=None, **kwargs) -> Agent:
    kwargs.setdefault("token_counter", TokenCounter(None))
    return Agent(client, "You are a test agent.", tools=registry, **kwargs)


def _tool_messages(agent: Agent) -> list[ToolMessage]:
    return [m for m in agent.history if isinstance(m, ToolMessage)]


class TestTextOnlyResponse:
    async def test_returns_text(self, registry):
        client = ScriptedClient([text_turn("done")])
        agent = _agent(client, registry)
        agent.add_user_message("hi")

        assert await agent.run() == "done"
        assert client.call_count == 1
        assert isinstance(agent.history[-1], AssistantMessage)
        assert agent.history[-1].content == "done"

    async def test_history_starts_with_system(self):
        agent = _agent(ScriptedClient([text_turn("ok")]))
        assert isinstance(agent.history[0], SystemMessage)
        assert agent.history[0].content == "You are a test agent."

    async def test_empty_turn_returns_empty_string(self):
        client = ScriptedClient([[StreamChunk(done=True, finish_reason="stop")]])
        agent = _agent(client)
        agent.add_user_message("hi")
        assert await agent.run() == ""


class TestToolLoop:
    async def test_tool_then_answer(self, registry):
        client = ScriptedClient([
            tool_call_turn("echo", {"message": "ping"}, call_id="call_1"),
            text_turn("all good"),
        ])
        agent = _agent(client, registry)
        agent.add_user_message("echo ping")

        assert await agent.run() == "all good"
        assert client.call_count == 2

        kinds = [type(m).__name__ for m in agent.history]
        assert kinds == [
            "SystemMessage",
            "UserMessage",
            "AssistantMessage",
            "ToolMessage",
            "AssistantMessage",
        ]
        tool_msg = agent.history[3]
        assert tool_msg.tool_call_id == "call_1"
        assert tool_msg.name == "echo"
        assert tool_msg.content == "ping"

    async def test_second_call_sees_tool_result(self, registry):
        client = ScriptedClient([
            tool_call_turn("echo", {"message": "ping"}, call_id="call_1"),
            text_turn("done"),
        ])
        agent = _agent(client, registry)
        agent.add_user_message("go")
        await agent.run()

        second_request, _ = client.calls[1]
        assert isinstance(second_request[-1], ToolMessage)
        assert second_request[-1].tool_call_id == "call_1"

    async def test_tool_catalog_sent_every_step(self, registry):
        client = ScriptedClient([
            tool_call_turn("echo", {"message": "a"}),
            text_turn("done"),
        ])
        agent = _agent(client, registry)
        agent.add_user_message("go")
        await agent.run()

        for _, tools in client.calls:
            assert [t.name for t in tools] == ["echo", "write_file", "fail", "explode"]

    async def test_no_tools_sends_none(self):
        client = ScriptedClient([text_turn("plain")])
        agent = _agent(client)
        agent.add_user_message("hi")
        await agent.run()
        assert client.calls[0][1] is None

    async def test_results_appended_in_emission_order(self, registry):
        client = ScriptedClient([
            multi_tool_call_turn([
                ("write_file", {"path": "a.txt", "content": "A"}, "call_w"),
                ("echo", {"message": "first"}, "call_e"),
            ]),
            text_turn("done"),
        ])
        agent = _agent(client, registry)
        agent.add_user_message("go")
        await agent.run()

        tool_msgs = _tool_messages(agent)
        assert [m.tool_call_id for m in tool_msgs] == ["call_w", "call_e"]
        assert tool_msgs[0].content == "Wrote to a.txt"
        assert registry.get("write_file").writes == [("a.txt", "A")]

    async def test_assistant_text_kept_with_tool_calls(self, registry):
        client = ScriptedClient([
            tool_call_turn("echo", {"message": "x"}, content_prefix="Let me check."),
            text_turn("done"),
        ])
        agent = _agent(client, registry)
        agent.add_user_message("go")
        await agent.run()

        assistant = agent.history[2]
        assert assistant.content == "Let me check."
        assert assistant.tool_calls[0].name == "echo"


class TestConcurrentTools:
    async def test_tools_run_concurrently(self):
        log: list[str] = []
        registry = ToolRegistry([SlowTool("slow_a", log), SlowTool("slow_b", log)])
        client = ScriptedClient([
            multi_tool_call_turn([
                ("slow_a", {"delay": 0.05}, "call_a"),
                ("slow_b", {"delay": 0.01}, "call_b"),
            ]),
            text_turn("done"),
        ])
        agent = _agent(client, registry)
        agent.add_user_message("go")
        await agent.run()

        # Both started before either finished; b finished first.
        assert log[:2] == ["start:slow_a", "start:slow_b"]
        assert log[2:] == ["end:slow_b", "end:slow_a"]
        # Results still follow emission order.
        assert [m.tool_call_id for m in _tool_messages(agent)] == ["call_a", "call_b"]

    async def test_failure_does_not_cancel_siblings(self):
        log: list[str] = []
        registry = ToolRegistry([RaisingTool(), SlowTool("slow", log)])
        client = ScriptedClient([
            multi_tool_call_turn([
                ("explode", {}, "call_x"),
                ("slow", {"delay": 0.01}, "call_s"),
            ]),
            text_turn("done"),
        ])
        agent = _agent(client, registry)
        agent.add_user_message("go")
        await agent.run()

        contents = [m.content for m in _tool_messages(agent)]
        assert contents[0].startswith("Error: RuntimeError: boom")
        assert contents[1] == "slow slept 0.01"
        assert log == ["start:slow", "end:slow"]


class TestToolErrors:
    async def _single_tool_message(self, registry, name, args) -> ToolMessage:
        client = ScriptedClient([tool_call_turn(name, args), text_turn("done")])
        agent = _agent(client, registry, tool_timeout=0.05)
        agent.add_user_message("go")
        await agent.run()
        [msg] = _tool_messages(agent)
        return msg

    async def test_unknown_tool(self, registry):
        msg = await self._single_tool_message(registry, "nope", {})
        assert msg.content == "Error: Unknown tool: nope"

    async def test_validation_error(self, registry):
        msg = await self._single_tool_message(registry, "echo", {"wrong": 1})
        assert msg.content.startswith("Error: Validation error:")

    async def test_failed_result(self, registry):
        msg = await self._single_tool_message(registry, "fail", {})
        assert msg.content == "Error: disk full"

    async def test_exception(self, registry):
        msg = await self._single_tool_message(registry, "explode", {})
        assert msg.content == "Error: RuntimeError: boom"

    async def test_timeout(self):
        registry = ToolRegistry([SlowTool("slow")])
        msg = await self._single_tool_message(registry, "slow", {"delay": 5})
        assert msg.content.startswith("Error: Timeout after")

    async def test_result_callback_receives_error_codes(self, registry):
        seen: list[tuple[str, str | None]] = []

        async def on_result(tool_call, result):
            seen.append((tool_call.name, result.error_code))

        client = ScriptedClient([
            multi_tool_call_turn([
                ("echo", {"message": "ok"}, "c1"),
                ("nope", {}, "c2"),
                ("echo", {}, "c3"),
            ]),
            text_turn("done"),
        ])
        agent = _agent(client, registry, tool_result_callback=on_result)
        agent.add_user_message("go")
        await agent.run()

        assert sorted(seen, key=lambda s: str(s)) == sorted([
            ("echo", None),
            ("nope", ErrorCode.UNKNOWN_TOOL),
            ("echo", ErrorCode.VALIDATION_ERROR),
        ], key=lambda s: str(s))

    async def test_failing_result_callback_does_not_break_the_turn(self, registry):
        async def on_result(tool_call, result):
            raise RuntimeError("display went away")

        client = ScriptedClient([
            tool_call_turn("echo", {"message": "hi"}, "call_1"),
            text_turn("done"),
        ])
        agent = _agent(client, registry, tool_result_callback=on_result)
        agent.add_user_message("go")

        assert await agent.run() == "done"
        [msg] = _tool_messages(agent)
        assert msg.tool_call_id == "call_1"
        assert msg.content == "hi"


class TestStepCeiling:
    async def test_ceiling_message(self, registry):
        client = ScriptedClient([tool_call_turn("echo", {"message": "again"})])
        agent = _agent(client, registry, max_steps=1)
        agent.add_user_message("loop")

        result = await agent.run()
        assert result == "Task couldn't be completed after 1 steps."
        assert client.call_count == 1

    async def test_ceiling_counts_model_calls(self, registry):
        client = ScriptedClient([tool_call_turn("echo", {"message": "again"})])
        agent = _agent(client, registry, max_steps=3)
        agent.add_user_message("loop")

        result = await agent.run()
        assert result == "Task couldn't be completed after 3 steps."
        assert client.call_count == 3
        assert len(_tool_messages(agent)) == 3


class TestModelErrors:
    async def test_transport_error_propagates(self, registry):
        client = ScriptedClient([httpx.ConnectError("connection refused")])
        agent = _agent(client, registry)
        agent.add_user_message("hi")

        with pytest.raises(httpx.ConnectError):
            await agent.run()
        assert not any(isinstance(m, AssistantMessage) for m in agent.history)
        assert len(agent.history) == 2

    async def test_error_after_tool_step_keeps_earlier_messages(self, registry):
        client = ScriptedClient([
            tool_call_turn("echo", {"message": "x"}),
            RuntimeError("stream broke"),
        ])
        agent = _agent(client, registry)
        agent.add_user_message("hi")

        with pytest.raises(RuntimeError, match="stream broke"):
            await agent.run()
        assert isinstance(agent.history[-1], ToolMessage)


class TestHistory:
    async def test_clear_keeps_system(self, registry):
        client = ScriptedClient([
            tool_call_turn("echo", {"message": "x"}),
            text_turn("done"),
        ])
        agent = _agent(client, registry)
        agent.add_user_message("hi")
        await agent.run()
        total = len(agent.history)

        assert agent.clear_history_keep_system() == total - 1
        assert len(agent.history) == 1
        assert isinstance(agent.history[0], SystemMessage)

    def test_user_segments_stored_as_tuple(self):
        agent = _agent(ScriptedClient([text_turn("ok")]))
        agent.add_user_message([TextSegment("look at this")])
        msg = agent.history[-1]
        assert isinstance(msg, UserMessage)
        assert msg.content == (TextSegment("look at this"),)

    def test_history_is_a_snapshot(self):
        agent = _agent(ScriptedClient([text_turn("ok")]))
        snapshot = agent.history
        agent.add_user_message("later")
        assert len(snapshot) == 1

    async def test_window_trims_request_not_history(self):
        client = ScriptedClient([text_turn("ok")])
        agent = _agent(client, token_limit=120)
        for i in range(20):
            agent.add_user_message(f"message number {i} " + "x" * 80)

        await agent.run()
        sent, _ = client.calls[0]
        assert isinstance(sent[0], SystemMessage)
        assert len(sent) < 21
        assert sent[-1].content.startswith("message number 19")
        # 1 system + 20 user + 1 assistant
        assert len(agent.history) == 22


class TestStreamCallback:
    async def test_chunks_forwarded(self):
        received: list[StreamChunk] = []

        async def on_chunk(chunk):
            received.append(chunk)

        client = ScriptedClient([text_turn("hello there")])
        agent = _agent(client, stream_callback=on_chunk)
        agent.add_user_message("hi")
        await agent.run()

        assert "".join(c.content or "" for c in received) == "hello there"
        assert received[-1].done

    async def test_thinking_recorded(self):
        client = ScriptedClient([[
            StreamChunk(thinking="pondering"),
            StreamChunk(content="answer"),
            StreamChunk(done=True, finish_reason="stop"),
        ]])
        agent = _agent(client)
        agent.add_user_message("hi")
        await agent.run()
        assert agent.history[-1].thinking == "pondering"


class TestWorkspace:
    def test_workspace_created_and_described(self, tmp_path):
        ws = tmp_path / "ws"
        agent = _agent(ScriptedClient([text_turn("ok")]), workspace_dir=ws)
        assert ws.is_dir()
        assert "## Current Workspace" in agent.system_prompt
        assert str(ws.resolve()) in agent.history[0].content

    def test_build_system_prompt_is_idempotent(self, tmp_path):
        once = build_system_prompt("base", tmp_path)
        assert build_system_prompt(once, tmp_path) == once
        assert build_system_prompt("base", None) == "base"


class TestFormatToolResult:
    def test_success(self):
        assert format_tool_result(ToolResult(success=True, content="42")) == "42"

    def test_error_prefers_error_field(self):
        result = ToolResult(success=False, content="partial", error="bad input")
        assert format_tool_result(result) == "Error: bad input"

    def test_error_falls_back_to_content(self):
        result = ToolResult(success=False, content="oops")
        assert format_tool_result(result) == "Error: oops"
