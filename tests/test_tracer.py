"""Tests for the agentloop.tracer framework."""

from pathlib import Path
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
import yaml

from agentloop.action import CodeAction, FinalAnswerAction
from agentloop.agent import AgentCore
from agentloop.events import AgentEvent, TracerEventSink
from agentloop.state import AgentState
from agentloop.tracer import (
    Span,
    SpanKind,
    Tracer,
    TracerCallbackHandler,
    YAMLExporter,
    get_active_tracer,
    get_current_span,
    trace_llm,
    trace_tool,
    use_span,
)

from helpers import ScriptedReasoning, counting_add


def chat_start_message(role: str = "system", content: str = "prompt"):
    msg = MagicMock()
    msg.type = role
    msg.content = content
    return msg


# ---------------------------------------------------------------------------
# Span
# ---------------------------------------------------------------------------


class TestSpan:
    def test_create_span(self):
        span = Span(kind=SpanKind.RUN, name="researcher")
        assert span.status == "ok"
        assert span.children == []
        assert span.parent is None
        assert len(span.span_id) == 12
        assert not span.finished

    def test_finish_error(self):
        span = Span(kind=SpanKind.ACTION, name="code")
        span.finish(error=RuntimeError())
        assert span.finished
        assert span.status == "error"
        assert span.error == "RuntimeError"

    def test_find(self):
        run = Span(kind=SpanKind.RUN, name="run")
        for number in (1, 2):
            step = Span(kind=SpanKind.STEP, name=f"step {number}")
            step.add_child(Span(kind=SpanKind.LLM_CALL, name="next_action"))
            run.add_child(step)

        assert [s.name for s in run.find(SpanKind.STEP)] == ["step 1", "step 2"]
        assert len(run.find(SpanKind.LLM_CALL)) == 2
        assert run.find(SpanKind.RUN) == [run]

    def test_to_dict(self):
        run = Span(kind=SpanKind.RUN, name="run")
        step = Span(kind=SpanKind.STEP, name="step 1")
        step.set_attribute("step_number", 1)
        run.add_child(step)
        step.finish()
        run.finish()

        d = run.to_dict()
        assert d["kind"] == "run"
        assert d["children"][0]["attributes"] == {"step_number": 1}
        assert "children" not in d["children"][0]
        assert "parent" not in d
        assert "events" not in d

    def test_events_and_token_usage(self):
        run = Span(kind=SpanKind.RUN, name="run")
        run.record_event({"state": "init"})
        for prompt, completion in ((10, 2), (30, 5)):
            call = Span(kind=SpanKind.LLM_CALL, name="next_action")
            call.set_attribute("token_usage", {"prompt_tokens": prompt, "completion_tokens": completion,
                                               "total_tokens": prompt + completion})
            run.add_child(call)
        run.add_child(Span(kind=SpanKind.LLM_CALL, name="planning"))

        assert run.llm_token_usage() == {"prompt_tokens": 40, "completion_tokens": 7, "total_tokens": 47}
        assert run.to_dict()["events"] == [{"state": "init"}]
        assert run.duration_ms is None


# ---------------------------------------------------------------------------
# Tracer
# ---------------------------------------------------------------------------


class TestTracer:
    def test_activate_deactivate(self):
        tracer = Tracer()
        token = tracer.activate()
        assert get_active_tracer() is tracer
        tracer.deactivate(token)
        assert get_active_tracer() is None

    def test_start_end_span(self):
        tracer = Tracer()
        run, token = tracer.start_span(SpanKind.RUN, "run", {"task": "t"})
        step, step_token = tracer.start_span(SpanKind.STEP, "step 1")

        assert get_current_span() is step
        assert step.parent is run
        assert run.attributes == {"task": "t"}

        tracer.end_span(step, step_token)
        assert get_current_span() is run
        tracer.end_span(run, token)
        assert get_current_span() is None
        assert tracer.root_span is run

    @pytest.mark.asyncio
    async def test_span_context_manager(self):
        tracer = Tracer()
        async with tracer.span(SpanKind.RUN, "first"):
            pass
        with pytest.raises(ValueError, match="boom"):
            async with tracer.span(SpanKind.RUN, "second") as span:
                raise ValueError("boom")

        assert span.status == "error"
        assert [r.name for r in tracer.roots] == ["first", "second"]
        assert get_current_span() is None

    def test_export_without_exporter(self):
        tracer = Tracer()
        tracer.export()

    def test_export_latest_root(self):
        exporter = MagicMock()
        tracer = Tracer(exporter=exporter)
        tracer.export()
        exporter.export.assert_not_called()

        span, token = tracer.start_span(SpanKind.RUN, "run")
        tracer.end_span(span, token)
        tracer.export()
        exporter.export.assert_called_once_with(span)

    def test_callback_handler_is_shared(self):
        tracer = Tracer()
        assert isinstance(tracer.callback_handler, TracerCallbackHandler)
        assert tracer.callback_handler is tracer.callback_handler


# ---------------------------------------------------------------------------
# YAMLExporter
# ---------------------------------------------------------------------------


class TestYAMLExporter:
    def test_export_creates_file(self, tmp_path: Path):
        exporter = YAMLExporter(output_dir=tmp_path / "traces")
        root = Span(kind=SpanKind.RUN, name="researcher")
        root.set_attribute("exit_reason", "final_answer")
        step = Span(kind=SpanKind.STEP, name="step 1")
        call = Span(kind=SpanKind.LLM_CALL, name="next_action")
        call.set_attribute("response", {"content": "Thought: é"})
        call.set_attribute("token_usage", {"prompt_tokens": 12, "completion_tokens": 4, "total_tokens": 16})
        step.add_child(call)
        root.add_child(step)
        call.finish()
        step.finish()
        root.finish()

        path = exporter.export(root, filename="run.yaml")

        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        assert data["summary"]["agent"] == "researcher"
        assert data["summary"]["exit_reason"] == "final_answer"
        assert data["summary"]["steps"] == 1
        assert data["summary"]["llm_calls"] == 1
        assert data["summary"]["llm_token_usage"]["total_tokens"] == 16
        assert data["trace"]["kind"] == "run"
        assert data["trace"]["children"][0]["children"][0]["attributes"]["response"]["content"] == "Thought: é"

    def test_export_auto_filename(self, tmp_path: Path):
        root = Span(kind=SpanKind.RUN, name="code agent")
        root.finish()
        path = YAMLExporter(output_dir=tmp_path).export(root)
        assert path.name.startswith("trace_")
        assert path.name.endswith(f"_code_agent_{root.span_id}.yaml")


# ---------------------------------------------------------------------------
# TracerCallbackHandler
# ---------------------------------------------------------------------------


class TestTracerCallbackHandler:
    @staticmethod
    async def drive(span: Span, serialized: dict, generation=None, llm_output=None) -> TracerCallbackHandler:
        """Feed one chat model call through a fresh handler while *span* is current."""
        handler = TracerCallbackHandler()
        run_id = uuid4()
        with use_span(span):
            await handler.on_chat_model_start(
                serialized=serialized, messages=[[chat_start_message("human", "Hello")]], run_id=run_id,
            )
            if generation is not None:
                result = MagicMock()
                result.generations = [[generation]]
                result.llm_output = llm_output
                await handler.on_llm_end(response=result, run_id=run_id)
        return handler

    @pytest.mark.asyncio
    async def test_request_response_and_usage(self):
        span = Span(kind=SpanKind.LLM_CALL, name="next_action")
        gen = MagicMock()
        gen.text = "Thought: look it up"
        gen.message = None

        await self.drive(
            span,
            {"id": ["langchain", "chat_models", "openai", "ChatOpenAI"], "kwargs": {"model_name": "gpt-4o"}},
            gen,
            {"token_usage": {"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150}},
        )

        assert span.attributes["model"] == "gpt-4o"
        assert span.attributes["request"]["messages"] == [{"role": "human", "content": "Hello"}]
        assert span.attributes["response"] == {"content": "Thought: look it up"}
        assert span.attributes["token_usage"]["total_tokens"] == 150

    @pytest.mark.asyncio
    async def test_usage_metadata_fallback(self):
        from langchain_core.messages import AIMessage

        span = Span(kind=SpanKind.LLM_CALL, name="planning")
        gen = MagicMock()
        gen.text = ""
        gen.message = AIMessage(
            content="## Plan\n1. go",
            usage_metadata={"input_tokens": 7, "output_tokens": 3, "total_tokens": 10},
        )

        await self.drive(span, {"id": ["FakeListChatModel"]}, gen)

        assert span.attributes["model"] == "FakeListChatModel"
        assert span.attributes["response"]["content"] == "## Plan\n1. go"
        assert span.attributes["token_usage"] == {"prompt_tokens": 7, "completion_tokens": 3, "total_tokens": 10}

    @pytest.mark.asyncio
    async def test_error_marks_span(self):
        span = Span(kind=SpanKind.LLM_CALL, name="next_action")
        handler = TracerCallbackHandler()
        run_id = uuid4()
        with use_span(span):
            await handler.on_chat_model_start(
                serialized={"id": ["ChatOpenAI"]}, messages=[[chat_start_message()]], run_id=run_id,
            )
        await handler.on_llm_error(error=RuntimeError("API error"), run_id=run_id)

        assert span.status == "error"
        assert "API error" in span.error

    @pytest.mark.asyncio
    async def test_only_llm_call_spans_are_filled(self):
        span = Span(kind=SpanKind.STEP, name="step 1")
        await self.drive(span, {"id": ["ChatOpenAI"]}, MagicMock())
        assert span.attributes == {}


# ---------------------------------------------------------------------------
# Decorators
# ---------------------------------------------------------------------------


class TestDecorators:
    @pytest.mark.asyncio
    async def test_trace_llm_creates_span(self):
        tracer = Tracer()
        token = tracer.activate()
        parent, parent_token = tracer.start_span(SpanKind.STEP, "step 1")

        @trace_llm("next_action")
        async def next_action():
            assert get_current_span().kind == SpanKind.LLM_CALL
            return "result"

        assert await next_action() == "result"
        assert get_current_span() is parent
        assert parent.children[0].name == "next_action"
        assert parent.children[0].duration_ms is not None

        tracer.end_span(parent, parent_token)
        tracer.deactivate(token)

    @pytest.mark.asyncio
    async def test_trace_llm_error(self):
        tracer = Tracer()
        token = tracer.activate()
        parent, parent_token = tracer.start_span(SpanKind.STEP, "step 1")

        @trace_llm("next_action")
        async def failing():
            raise ValueError("fail!")

        with pytest.raises(ValueError, match="fail!"):
            await failing()
        assert parent.children[0].status == "error"
        assert get_current_span() is parent

        tracer.end_span(parent, parent_token)
        tracer.deactivate(token)

    @pytest.mark.asyncio
    async def test_no_tracer_passthrough(self):
        assert get_active_tracer() is None

        @trace_llm("test")
        async def answer():
            return 42

        assert await answer() == 42

    @pytest.mark.asyncio
    async def test_trace_tool_name_from_argument(self):
        tracer = Tracer()
        token = tracer.activate()
        parent, parent_token = tracer.start_span(SpanKind.ACTION, "code")

        @trace_tool()
        async def invoke(tool, arguments, ctx, tool_name=None):
            return get_current_span().name

        assert await invoke(None, {}, None, tool_name="search") == "search"
        assert await invoke(None, {}, None, "lookup") == "lookup"
        assert await invoke(None, {}, None) == "invoke"
        assert [c.kind for c in parent.children] == [SpanKind.TOOL_CALL] * 3

        tracer.end_span(parent, parent_token)
        tracer.deactivate(token)


# ---------------------------------------------------------------------------
# Agent integration
# ---------------------------------------------------------------------------


class TestTracerEventSink:
    def test_attaches_to_current_span(self):
        span = Span(kind=SpanKind.STEP, name="step 1")
        with use_span(span):
            TracerEventSink().emit(AgentEvent(run_id="abc", agent_name="agent", state=AgentState.REASONING, step_number=1))

        assert span.events[0]["state"] == "reasoning"
        assert span.events[0]["step_number"] == 1

    def test_without_span(self):
        TracerEventSink().emit(AgentEvent(run_id="abc", agent_name="agent", state=AgentState.INIT))


class TestRunTrace:
    @pytest.mark.asyncio
    async def test_run_hierarchy_is_exported(self, tmp_path: Path):
        tracer = Tracer(exporter=YAMLExporter(output_dir=tmp_path))
        token = tracer.activate()
        add, _ = counting_add()
        agent = AgentCore(
            "tracer_agent",
            ScriptedReasoning([CodeAction(code="add(1, 2)"), FinalAnswerAction(answer=3)]),
            [add],
            planning_interval=5,
            event_sinks=[TracerEventSink()],
        )
        try:
            await agent.run("Add one and two")
        finally:
            tracer.deactivate(token)

        files = list(tmp_path.glob("trace_*.yaml"))
        assert len(files) == 1
        with open(files[0], "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)

        assert data["summary"]["steps"] == 2
        assert data["summary"]["tool_calls"] == 1
        trace = data["trace"]
        assert trace["kind"] == "run"
        assert trace["attributes"]["exit_reason"] == "final_answer"
        assert trace["events"][0]["state"] == "init"
        step = trace["children"][0]
        assert step["kind"] == "step"
        assert [c["kind"] for c in step["children"]] == ["planning", "action"]
        assert step["children"][1]["children"][0]["name"] == "add"
        states = [e["state"] for e in step["events"]]
        assert states == ["planning", "reasoning", "dispatching", "observing"]
