"""
Unit tests for the pipeline orchestrator.

Tests cover:
- Step ordering and cascading dependency context
- Pause/resume/cancel, including cancel while paused
- Escalation gating
- Agent failure and fail-fast configuration errors
- Resuming with preloaded outputs
"""

import asyncio
from typing import List

import pytest

from conftest import PROJECT_ID, ScriptedAgent, failing_error, make_steps
from inkwell.core.errors import AgentExecutionError, PipelineConfigurationError
from inkwell.core.pipeline import AgentPipeline, build_step_messages, validate_steps
from inkwell.core.post_processing import StepPostProcessor
from inkwell.core.registry import RunRegistry
from inkwell.core.resume import ExecutionStatus, can_launch, summarize_records
from inkwell.models import (
    AgentRole,
    PipelineConfig,
    PipelineEvent,
    PipelineEventType,
    PipelineState,
    StepOutput,
    StepStatus,
)

THREE_ROLES = [AgentRole.COORDINATOR, AgentRole.PLOT_ARCHITECT, AgentRole.WRITER]


def build_pipeline(store, llm_config, agent, steps, registry=None, **kwargs):
    preloaded = kwargs.pop("preloaded_outputs", {})
    config = PipelineConfig(
        project_id=PROJECT_ID,
        chapter_id=kwargs.pop("chapter_id", "ch-3"),
        steps=steps,
        preloaded_outputs=preloaded,
    )
    return AgentPipeline(config, agent, store, llm_config, registry=registry or RunRegistry(), **kwargs)


def types_of(events: List[PipelineEvent]) -> List[str]:
    return [event.type.value for event in events]


async def wait_for_event(events: List[PipelineEvent], event_type: PipelineEventType, attempts: int = 500):
    for _ in range(attempts):
        if any(event.type == event_type for event in events):
            return
        await asyncio.sleep(0.001)
    raise AssertionError(f"{event_type.value} event never arrived")


class TestExecutionOrder:
    """Tests for sequential execution and event emission."""

    @pytest.mark.asyncio
    async def test_steps_run_in_order_and_complete(self, store, llm_config):
        """Test that every step runs once, in index order, and the run completes."""
        agent = ScriptedAgent(["plan", "outline", "draft"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES))
        events: List[PipelineEvent] = []

        result = await pipeline.execute(events.append)

        assert [call["role"] for call in agent.calls] == THREE_ROLES
        assert result.state == PipelineState.COMPLETED
        assert [o.raw_text for o in result.outputs] == ["plan", "outline", "draft"]
        assert types_of(events)[0] == "plan"
        assert types_of(events)[-1] == "completed"
        assert "error" not in types_of(events)

        starts = [e.step_index for e in events if e.type == PipelineEventType.STEP_START]
        completes = [e.step_index for e in events if e.type == PipelineEventType.STEP_COMPLETE]
        assert starts == [0, 1, 2]
        assert completes == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_chunks_stream_between_start_and_complete(self, store, llm_config):
        """Test that stream chunks for a step arrive after its start and before its completion."""
        agent = ScriptedAgent(["abcdef"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps([AgentRole.COORDINATOR]))
        events: List[PipelineEvent] = []

        await pipeline.execute(events.append)

        assert types_of(events) == [
            "plan", "step_start", "step_stream_chunk", "step_stream_chunk", "step_complete", "completed",
        ]
        chunks = [e.data["text"] for e in events if e.type == PipelineEventType.STEP_STREAM_CHUNK]
        assert "".join(chunks) == "abcdef"
        complete = events[4]
        assert complete.data["output"] == "abcdef"
        assert complete.data["token_usage"] == {"input_tokens": 10, "output_tokens": 6}
        assert complete.role == AgentRole.COORDINATOR

    @pytest.mark.asyncio
    async def test_async_sink_is_awaited(self, store, llm_config):
        """Test that an async event sink receives every event."""
        agent = ScriptedAgent(["x"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps([AgentRole.COORDINATOR]))
        received = []

        async def sink(event):
            await asyncio.sleep(0)
            received.append(event.type)

        await pipeline.execute(sink)

        assert received[0] == PipelineEventType.PLAN
        assert received[-1] == PipelineEventType.COMPLETED

    @pytest.mark.asyncio
    async def test_dependency_outputs_are_labeled_in_declared_order(self, store, llm_config):
        """Test that a step sees its dependencies' outputs as labeled sections in declared order."""
        agent = ScriptedAgent(["A", "B", "C"])
        steps = make_steps(THREE_ROLES, depends={2: [0, 1]})
        pipeline = build_pipeline(store, llm_config, agent, steps)

        await pipeline.execute()

        context = agent.context_message(2)
        assert "## Coordinator (step 0)\n\nA" in context
        assert "## Plot Architect (step 1)\n\nB" in context
        assert context.index("## Coordinator (step 0)") < context.index("## Plot Architect (step 1)")
        assert agent.calls[2]["messages"][-1].content == "Do step 2"

    @pytest.mark.asyncio
    async def test_dependency_order_follows_declaration_not_index(self, store, llm_config):
        """Test that dependencies declared as [1, 0] are rendered 1 before 0."""
        agent = ScriptedAgent(["A", "B", "C"])
        steps = make_steps(THREE_ROLES, depends={2: [1, 0]})
        pipeline = build_pipeline(store, llm_config, agent, steps)

        await pipeline.execute()

        context = agent.context_message(2)
        assert context.index("(step 1)") < context.index("(step 0)")

    @pytest.mark.asyncio
    async def test_global_context_precedes_dependencies(self, store, llm_config):
        """Test that the project context is loaded once and sent ahead of dependency sections."""
        agent = ScriptedAgent(["A", "B"])
        steps = make_steps(THREE_ROLES[:2], depends={1: [0]})
        pipeline = build_pipeline(store, llm_config, agent, steps)

        await pipeline.execute()

        context = agent.context_message(1)
        assert context.startswith("Below is project context:")
        assert context.index("## Synopsis") < context.index("## Coordinator (step 0)")
        assert '## This Chapter: Chapter 3 "The Crossing"' in context

    @pytest.mark.asyncio
    async def test_step_records_are_persisted(self, store, llm_config):
        """Test that each executed step leaves a completed record in the store."""
        agent = ScriptedAgent(["A", "B"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES[:2]))

        await pipeline.execute()

        records = await store.list_step_records(PROJECT_ID, "ch-3")
        assert sorted(r.step_index for r in records) == [0, 1]
        assert all(r.status == StepStatus.COMPLETED for r in records)
        assert {r.output for r in records} == {"A", "B"}

    @pytest.mark.asyncio
    async def test_run_is_registered_only_while_executing(self, store, llm_config):
        """Test that the run is in the registry during execution and removed afterwards."""
        registry = RunRegistry()
        agent = ScriptedAgent(["A"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps([AgentRole.WRITER]), registry=registry)
        seen = []
        agent.before_reply = lambda _i: seen.append(pipeline.run_id in registry)

        await pipeline.execute()

        assert seen == [True]
        assert pipeline.run_id not in registry

    @pytest.mark.asyncio
    async def test_owner_can_keep_finished_run_registered(self, store, llm_config):
        """Test that release_on_finish=False leaves deregistration to the caller."""
        registry = RunRegistry()
        pipeline = build_pipeline(
            store, llm_config, ScriptedAgent(), make_steps([AgentRole.WRITER]),
            registry=registry, release_on_finish=False,
        )

        await pipeline.execute()

        assert registry.get(pipeline.run_id) is pipeline
        assert pipeline.snapshot().state == PipelineState.COMPLETED

    @pytest.mark.asyncio
    async def test_execute_twice_is_rejected(self, store, llm_config):
        """Test that a finished pipeline cannot be started again."""
        pipeline = build_pipeline(store, llm_config, ScriptedAgent(), make_steps([AgentRole.WRITER]))
        await pipeline.execute()

        with pytest.raises(PipelineConfigurationError):
            await pipeline.execute()

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self, store, llm_config):
        """Test that progress only moves forward and ends at the step count."""
        agent = ScriptedAgent()
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES))
        seen = []
        agent.before_reply = lambda _i: seen.append(pipeline.progress())

        await pipeline.execute()

        assert seen == [(0, 3), (1, 3), (2, 3)]
        assert pipeline.progress() == (3, 3)


class TestControl:
    """Tests for pause, resume and cancel."""

    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_step(self, store, llm_config):
        """Test that cancelling during a step lets it finish but starts nothing after it."""
        agent = ScriptedAgent(["A", "B", "C"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES))
        agent.before_reply = lambda i: pipeline.cancel() if i == 1 else None
        events: List[PipelineEvent] = []

        result = await pipeline.execute(events.append)

        assert result.state == PipelineState.CANCELLED
        assert len(agent.calls) == 2
        starts = [e.step_index for e in events if e.type == PipelineEventType.STEP_START]
        assert starts == [0, 1]
        assert events[-1].type == PipelineEventType.ERROR
        assert events[-1].data["message"] == "Pipeline cancelled"
        assert "completed" not in types_of(events)
        assert [o.raw_text for o in result.outputs] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_pause_then_resume_continues_without_rerunning(self, store, llm_config):
        """Test that a paused run waits, then resumes at the same step without re-executing any step."""
        agent = ScriptedAgent(["A", "B", "C"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES))
        agent.before_reply = lambda i: pipeline.pause() if i == 0 else None
        events: List[PipelineEvent] = []

        task = asyncio.create_task(pipeline.execute(events.append))
        await wait_for_event(events, PipelineEventType.PAUSED)

        assert pipeline.state == PipelineState.PAUSED
        assert len(agent.calls) == 1
        assert pipeline.progress() == (0, 3)

        assert pipeline.resume() is True
        result = await asyncio.wait_for(task, timeout=1)

        assert result.state == PipelineState.COMPLETED
        assert [call["role"] for call in agent.calls] == THREE_ROLES
        assert types_of(events).count("paused") == 1

    @pytest.mark.asyncio
    async def test_paused_run_never_completes_without_resume(self, store, llm_config):
        """Test that a paused run stays parked."""
        agent = ScriptedAgent()
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES))
        agent.before_reply = lambda i: pipeline.pause() if i == 0 else None
        events: List[PipelineEvent] = []

        task = asyncio.create_task(pipeline.execute(events.append))
        await wait_for_event(events, PipelineEventType.PAUSED)
        done, _pending = await asyncio.wait({task}, timeout=0.05)

        assert not done
        assert "completed" not in types_of(events)

        pipeline.cancel()
        await asyncio.wait_for(task, timeout=1)

    @pytest.mark.asyncio
    async def test_cancel_while_paused_wakes_the_loop(self, store, llm_config):
        """Test that cancel unblocks a paused run promptly."""
        agent = ScriptedAgent()
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES))
        agent.before_reply = lambda i: pipeline.pause() if i == 0 else None
        events: List[PipelineEvent] = []

        task = asyncio.create_task(pipeline.execute(events.append))
        await wait_for_event(events, PipelineEventType.PAUSED)

        assert pipeline.cancel() is True
        result = await asyncio.wait_for(task, timeout=1)

        assert result.state == PipelineState.CANCELLED
        assert len(agent.calls) == 1
        assert events[-1].type == PipelineEventType.ERROR
        assert types_of(events).count("step_start") == 1

    @pytest.mark.asyncio
    async def test_resume_from_another_thread(self, store, llm_config):
        """Test that resume called off the event loop thread still wakes the run."""
        agent = ScriptedAgent()
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES))
        agent.before_reply = lambda i: pipeline.pause() if i == 0 else None
        events: List[PipelineEvent] = []

        task = asyncio.create_task(pipeline.execute(events.append))
        await wait_for_event(events, PipelineEventType.PAUSED)

        resumed = await asyncio.to_thread(pipeline.resume)
        result = await asyncio.wait_for(task, timeout=1)

        assert resumed is True
        assert result.state == PipelineState.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_from_another_thread_while_paused(self, store, llm_config):
        """Test that cancel called off the event loop thread wakes a paused run."""
        agent = ScriptedAgent()
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES))
        agent.before_reply = lambda i: pipeline.pause() if i == 0 else None
        events: List[PipelineEvent] = []

        task = asyncio.create_task(pipeline.execute(events.append))
        await wait_for_event(events, PipelineEventType.PAUSED)

        await asyncio.to_thread(pipeline.cancel)
        result = await asyncio.wait_for(task, timeout=1)

        assert result.state == PipelineState.CANCELLED

    def test_control_misuse_is_a_noop(self, store, llm_config):
        """Test that control calls in the wrong state do nothing and never raise."""
        pipeline = build_pipeline(store, llm_config, ScriptedAgent(), make_steps(THREE_ROLES))

        assert pipeline.pause() is False
        assert pipeline.resume() is False
        assert pipeline.cancel() is False
        assert pipeline.state == PipelineState.IDLE

    @pytest.mark.asyncio
    async def test_control_after_completion_is_a_noop(self, store, llm_config):
        """Test that pause/resume/cancel after the run finished leave it completed."""
        pipeline = build_pipeline(store, llm_config, ScriptedAgent(), make_steps([AgentRole.WRITER]))
        await pipeline.execute()

        assert pipeline.pause() is False
        assert pipeline.resume() is False
        assert pipeline.cancel() is False
        assert pipeline.state == PipelineState.COMPLETED

    @pytest.mark.asyncio
    async def test_resume_while_running_is_a_noop(self, store, llm_config):
        """Test that resume on a running run changes nothing."""
        agent = ScriptedAgent()
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES[:2]))
        outcomes = []
        agent.before_reply = lambda _i: outcomes.append(pipeline.resume())

        result = await pipeline.execute()

        assert outcomes == [False, False]
        assert result.state == PipelineState.COMPLETED


class TestEscalation:
    """Tests for the consultation gate."""

    @pytest.mark.asyncio
    async def test_escalation_pauses_before_next_step(self, store, llm_config):
        """Test that a consultation flag pauses between step_complete and the next step_start."""
        outline = 'Kill the mentor in act two.\n{"requires_consultation": true, "reason": "major death"}'
        agent = ScriptedAgent([outline, "draft"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES[1:]))
        events: List[PipelineEvent] = []

        task = asyncio.create_task(pipeline.execute(events.append))
        await wait_for_event(events, PipelineEventType.PAUSED)

        assert pipeline.state == PipelineState.PAUSED
        assert types_of(events)[-4:] == ["step_stream_chunk", "step_complete", "escalation_required", "paused"]
        escalation = events[-2]
        assert escalation.data["role"] == "plot_architect"
        assert escalation.data["raw_text"] == outline
        assert len(agent.calls) == 1

        pipeline.resume()
        result = await asyncio.wait_for(task, timeout=1)

        assert result.state == PipelineState.COMPLETED
        assert len(agent.calls) == 2

    @pytest.mark.asyncio
    async def test_escalation_on_last_step_blocks_completion(self, store, llm_config):
        """Test that an escalation raised by the final step still needs a resume."""
        agent = ScriptedAgent(['{"requiresConsultation": true}'])
        pipeline = build_pipeline(store, llm_config, agent, make_steps([AgentRole.FIXER]))
        events: List[PipelineEvent] = []

        task = asyncio.create_task(pipeline.execute(events.append))
        await wait_for_event(events, PipelineEventType.PAUSED)

        assert "completed" not in types_of(events)
        pipeline.cancel()
        result = await asyncio.wait_for(task, timeout=1)
        assert result.state == PipelineState.CANCELLED

    @pytest.mark.asyncio
    async def test_false_flag_does_not_escalate(self, store, llm_config):
        """Test that an explicit false flag lets the run continue."""
        agent = ScriptedAgent(['{"requires_consultation": false}', "draft"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES[1:]))
        events: List[PipelineEvent] = []

        result = await pipeline.execute(events.append)

        assert result.state == PipelineState.COMPLETED
        assert "escalation_required" not in types_of(events)

    @pytest.mark.asyncio
    async def test_custom_marker(self, store, llm_config, settings):
        """Test that the escalation marker comes from settings."""
        settings.escalation_marker = "needs_review"
        agent = ScriptedAgent(['{"needs_review": true}'])
        pipeline = build_pipeline(
            store, llm_config, agent, make_steps([AgentRole.WRITER]), settings=settings
        )
        events: List[PipelineEvent] = []

        task = asyncio.create_task(pipeline.execute(events.append))
        await wait_for_event(events, PipelineEventType.ESCALATION_REQUIRED)
        pipeline.resume()
        await asyncio.wait_for(task, timeout=1)

        assert types_of(events)[-1] == "completed"

    @pytest.mark.asyncio
    async def test_escalation_is_reported_when_already_paused(self, store, llm_config):
        """Test that a flagged step finishing after a manual pause still raises escalation_required."""
        agent = ScriptedAgent(['{"requires_consultation": true}', "draft"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES[1:]))
        agent.before_reply = lambda i: pipeline.pause() if i == 0 else None
        events: List[PipelineEvent] = []

        task = asyncio.create_task(pipeline.execute(events.append))
        await wait_for_event(events, PipelineEventType.PAUSED)

        assert types_of(events)[-3:] == ["step_complete", "escalation_required", "paused"]
        assert pipeline.state == PipelineState.PAUSED

        pipeline.resume()
        result = await asyncio.wait_for(task, timeout=1)

        assert result.state == PipelineState.COMPLETED
        assert types_of(events).count("escalation_required") == 1

    @pytest.mark.asyncio
    async def test_cancelled_run_does_not_escalate(self, store, llm_config):
        agent = ScriptedAgent(['{"requires_consultation": true}', "draft"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES[1:]))
        agent.before_reply = lambda i: pipeline.cancel() if i == 0 else None
        events: List[PipelineEvent] = []

        result = await pipeline.execute(events.append)

        assert result.state == PipelineState.CANCELLED
        assert "escalation_required" not in types_of(events)


class TestFailures:
    """Tests for agent failures and configuration errors."""

    @pytest.mark.asyncio
    async def test_agent_failure_ends_run_in_error(self, store, llm_config):
        """Test that an agent failure emits one error event, propagates and keeps partial output."""
        registry = RunRegistry()
        agent = ScriptedAgent(["A", failing_error("rate limit exceeded")])
        pipeline = build_pipeline(store, llm_config, agent, make_steps(THREE_ROLES), registry=registry)
        events: List[PipelineEvent] = []

        with pytest.raises(AgentExecutionError, match="rate limit"):
            await pipeline.execute(events.append)

        assert pipeline.state == PipelineState.ERROR
        assert types_of(events).count("error") == 1
        assert "completed" not in types_of(events)
        assert events[-1].data["message"] == "rate limit exceeded"
        assert pipeline.outputs[0].raw_text == "A"
        assert 2 not in pipeline.outputs
        assert pipeline.run_id not in registry

        records = {r.step_index: r for r in await store.list_step_records(PROJECT_ID, "ch-3")}
        assert records[0].status == StepStatus.COMPLETED
        assert records[1].status == StepStatus.FAILED

    def test_forward_dependency_fails_fast(self, store, llm_config):
        """Test that a dependency on a later step is rejected before anything runs."""
        agent = ScriptedAgent()
        steps = make_steps(THREE_ROLES, depends={0: [2]})

        with pytest.raises(PipelineConfigurationError):
            build_pipeline(store, llm_config, agent, steps)
        assert agent.calls == []

    def test_self_and_missing_dependencies_fail_fast(self):
        """Test that self references and unknown indices are configuration errors."""
        with pytest.raises(PipelineConfigurationError):
            validate_steps(make_steps(THREE_ROLES, depends={1: [1]}))
        with pytest.raises(PipelineConfigurationError):
            validate_steps(make_steps(THREE_ROLES, depends={1: [7]}))
        with pytest.raises(PipelineConfigurationError):
            validate_steps([])

    def test_preloaded_output_for_unknown_step_fails_fast(self):
        with pytest.raises(PipelineConfigurationError):
            validate_steps(make_steps(THREE_ROLES), {5: "stale"})

    @pytest.mark.asyncio
    async def test_sink_failure_is_reported_once(self, store, llm_config):
        """Test that a sink that breaks mid-run ends the run in error without a completed event."""
        agent = ScriptedAgent(["A"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps([AgentRole.WRITER]))
        seen = []

        def sink(event):
            seen.append(event.type)
            if event.type == PipelineEventType.STEP_COMPLETE:
                raise RuntimeError("sink closed")

        with pytest.raises(RuntimeError):
            await pipeline.execute(sink)

        assert pipeline.state == PipelineState.ERROR
        assert seen[-1] == PipelineEventType.ERROR
        assert PipelineEventType.COMPLETED not in seen

    @pytest.mark.asyncio
    async def test_sink_failure_mid_step_leaves_run_resumable(self, store, llm_config):
        """Test that a step interrupted by a failing sink is recorded as failed, not running."""
        agent = ScriptedAgent(["A long draft"])
        pipeline = build_pipeline(store, llm_config, agent, make_steps([AgentRole.WRITER]))

        def sink(event):
            if event.type == PipelineEventType.STEP_STREAM_CHUNK:
                raise RuntimeError("client went away")

        with pytest.raises(RuntimeError):
            await pipeline.execute(sink)

        records = await store.list_step_records(PROJECT_ID, "ch-3")
        assert [r.status for r in records] == [StepStatus.FAILED]
        assert records[0].error_message == "client went away"
        status = summarize_records(1, records)
        assert status == ExecutionStatus.FAILED
        assert can_launch(status) is True

    @pytest.mark.asyncio
    async def test_task_cancellation_marks_step_cancelled(self, store, llm_config):
        """Test that cancelling the task mid-step replaces the running record."""
        started = asyncio.Event()

        class HangingAgent(ScriptedAgent):
            async def execute(self, context, messages, on_chunk=None):
                started.set()
                await asyncio.Event().wait()

        pipeline = build_pipeline(store, llm_config, HangingAgent(), make_steps(THREE_ROLES[:2]))
        events: List[PipelineEvent] = []

        task = asyncio.create_task(pipeline.execute(events.append))
        await asyncio.wait_for(started.wait(), timeout=1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        records = await store.list_step_records(PROJECT_ID, "ch-3")
        assert [(r.step_index, r.status) for r in records] == [(0, StepStatus.CANCELLED)]
        assert can_launch(summarize_records(2, records)) is True
        assert pipeline.state == PipelineState.CANCELLED
        assert events[-1].data["message"] == "Pipeline cancelled"

    def test_preloaded_outputs_must_be_a_prefix(self):
        """Test that a restored step cannot follow one that runs again."""
        with pytest.raises(PipelineConfigurationError, match="prefix"):
            validate_steps(make_steps(THREE_ROLES), {1: "B"})
        with pytest.raises(PipelineConfigurationError, match="prefix"):
            validate_steps(make_steps(THREE_ROLES), {0: "A", 2: "C"})

        validate_steps(make_steps(THREE_ROLES), {0: "A", 1: "B"})


class TestPreloadedOutputs:
    """Tests for resuming with outputs from an earlier run."""

    @pytest.mark.asyncio
    async def test_preloaded_steps_are_not_executed(self, store, llm_config):
        """Test that preloaded steps feed later steps without invoking the agent."""
        agent = ScriptedAgent(["C"])
        steps = make_steps(THREE_ROLES, depends={2: [0, 1]})
        pipeline = build_pipeline(
            store, llm_config, agent, steps, preloaded_outputs={0: "A", 1: "B"}
        )
        events: List[PipelineEvent] = []

        result = await pipeline.execute(events.append)

        assert [call["role"] for call in agent.calls] == [AgentRole.WRITER]
        assert "## Coordinator (step 0)\n\nA" in agent.context_message(0)
        assert "## Plot Architect (step 1)\n\nB" in agent.context_message(0)
        assert [e.step_index for e in events if e.type == PipelineEventType.STEP_START] == [2]
        preloaded = [e for e in events if e.type == PipelineEventType.STEP_COMPLETE and e.data.get("preloaded")]
        assert [e.step_index for e in preloaded] == [0, 1]
        assert [o.preloaded for o in result.outputs] == [True, True, False]


class TestPostProcessingHook:
    """Tests for post-processing designated steps."""

    @pytest.mark.asyncio
    async def test_writer_output_is_saved_to_chapter(self, store, llm_config):
        """Test that a writer step stores its text as the chapter content."""
        agent = ScriptedAgent(["The boat left at dawn.<!-- SPLIT_SUGGESTION: after dawn -->"])
        pipeline = build_pipeline(
            store,
            llm_config,
            agent,
            make_steps([AgentRole.WRITER]),
            post_processor=StepPostProcessor(store),
        )

        result = await pipeline.execute()

        assert store.chapters["ch-3"].content == "The boat left at dawn."
        assert len(result.reports) == 1
        assert result.reports[0].content_saved is True

    @pytest.mark.asyncio
    async def test_post_processing_failure_does_not_stop_the_run(self, store, llm_config):
        """Test that a failing post-processor is logged and the run still completes."""
        class BrokenProcessor(StepPostProcessor):
            async def process(self, project_id, chapter_id, output):
                raise RuntimeError("database down")

        agent = ScriptedAgent(["text", "more"])
        pipeline = build_pipeline(
            store,
            llm_config,
            agent,
            make_steps([AgentRole.WRITER, AgentRole.CONTINUITY_CHECKER]),
            post_processor=BrokenProcessor(store),
        )

        result = await pipeline.execute()

        assert result.state == PipelineState.COMPLETED
        assert result.reports == []

    @pytest.mark.asyncio
    async def test_report_is_emitted_and_kept_on_snapshot(self, store, llm_config):
        """Test that the continuity report reaches the event stream and the run snapshot."""
        agent = ScriptedAgent(["draft", "The tide tables disagree with chapter one."])
        pipeline = build_pipeline(
            store,
            llm_config,
            agent,
            make_steps([AgentRole.WRITER, AgentRole.CONTINUITY_CHECKER]),
            post_processor=StepPostProcessor(store),
        )
        events: List[PipelineEvent] = []

        await pipeline.execute(events.append)

        processed = [e for e in events if e.type == PipelineEventType.POST_PROCESSED]
        assert [e.step_index for e in processed] == [0, 1]
        checker = processed[1].data
        assert checker["role"] == "continuity_checker"
        assert checker["parse_tier"] == "text_fallback"
        assert checker["consistency"]["issues"][0]["description"] == "The tide tables disagree with chapter one."
        assert types_of(events)[-3:] == ["step_complete", "post_processed", "completed"]
        assert pipeline.snapshot().post_processing == [e.data for e in processed]


class TestBuildStepMessages:
    """Tests for message assembly."""

    def test_no_context_and_no_dependencies(self):
        """Test that a step with nothing to inject gets only its own messages."""
        step = make_steps([AgentRole.COORDINATOR])[0]

        messages = build_step_messages(step, "", {})

        assert [m.content for m in messages] == ["Do step 0"]

    def test_dependencies_without_global_context(self):
        steps = make_steps(THREE_ROLES[:2], depends={1: [0]})
        outputs = {0: StepOutput(step_index=0, role=AgentRole.COORDINATOR, raw_text="A")}

        messages = build_step_messages(steps[1], "", outputs)

        assert messages[0].content == "Below is project context:\n\n## Coordinator (step 0)\n\nA"
        assert messages[1].content == "Do step 1"
