"""
Pipeline Orchestrator for Inkwell

Runs an ordered list of role steps for one chapter:
1. Load the project/chapter context once
2. Execute each step in order, feeding it the outputs of the steps it depends on
3. Stream progress to an event sink
4. Hand writer/editor/continuity output to post-processing
5. Stop for human review when a step asks for consultation

A run can be paused, resumed and cancelled from other tasks or threads while
it executes.
"""

import asyncio
import inspect
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from ..agents import GenerationAgent, build_agent_context
from ..config import LLMConfiguration, PipelineSettings
from ..models import (
    ROLE_LABELS,
    ChatMessage,
    PipelineConfig,
    PipelineEvent,
    PipelineEventType,
    PipelineRun,
    PipelineState,
    Step,
    StepOutput,
    StepRecord,
    StepStatus,
)
from ..services.narrative_store import NarrativeStore
from .context import SECTION_SEPARATOR, ContextAggregator
from .errors import PipelineConfigurationError
from .parsing import detect_escalation
from .post_processing import PostProcessingReport, StepPostProcessor
from .registry import RunRegistry
from .resume import ensure_step_ready

logger = logging.getLogger("inkwell.pipeline")

EventSink = Callable[[PipelineEvent], Union[None, Awaitable[None]]]

CONTEXT_HEADER = "Below is project context:"
CANCELLED_MESSAGE = "Pipeline cancelled"


def validate_steps(steps: List[Step], preloaded: Optional[Dict[int, str]] = None) -> None:
    """
    Check a step list before anything runs.

    Every dependency must point at an earlier step, and preloaded outputs
    must cover a leading run of steps: a step that executes again must not be
    followed by one restored from an earlier run.

    Raises:
        PipelineConfigurationError: the step list cannot be executed
    """
    if not steps:
        raise PipelineConfigurationError("Pipeline has no steps")

    for index, step in enumerate(steps):
        for dep in step.depends_on:
            if dep < 0 or dep >= len(steps):
                raise PipelineConfigurationError(
                    f"Step {index} depends on step {dep}, which does not exist"
                )
            if dep >= index:
                raise PipelineConfigurationError(
                    f"Step {index} depends on step {dep}, which does not run before it"
                )

    for index in (preloaded or {}):
        if index < 0 or index >= len(steps):
            raise PipelineConfigurationError(f"Preloaded output for unknown step {index}")

    if preloaded and sorted(preloaded) != list(range(len(preloaded))):
        raise PipelineConfigurationError(
            f"Preloaded outputs must be a prefix of the steps, got {sorted(preloaded)}"
        )


def build_step_messages(
    step: Step,
    context_text: str,
    outputs: Dict[int, StepOutput],
) -> List[ChatMessage]:
    """
    Context message (global context plus each dependency's output, in the
    order the dependencies were declared) followed by the step's own messages.
    """
    sections = []
    if context_text:
        sections.append(context_text)
    for dep in step.depends_on:
        output = outputs[dep]
        sections.append(f"## {ROLE_LABELS[output.role]} (step {dep})\n\n{output.raw_text}")

    messages: List[ChatMessage] = []
    if sections:
        messages.append(
            ChatMessage(role="user", content=f"{CONTEXT_HEADER}\n\n" + SECTION_SEPARATOR.join(sections))
        )
    messages.extend(step.messages)
    return messages


@dataclass
class PipelineResult:
    run_id: str
    state: PipelineState
    outputs: List[StepOutput] = field(default_factory=list)
    reports: List[PostProcessingReport] = field(default_factory=list)


class AgentPipeline:
    """
    One run of an ordered step list.

    State (lifecycle state, current step, wake signal) is guarded by a lock so
    the control methods can be called from any thread. The execution loop is
    the only writer of step outputs.
    """

    def __init__(
        self,
        config: PipelineConfig,
        agent: GenerationAgent,
        store: NarrativeStore,
        llm_config: LLMConfiguration,
        registry: Optional[RunRegistry] = None,
        settings: Optional[PipelineSettings] = None,
        post_processor: Optional[StepPostProcessor] = None,
        aggregator: Optional[ContextAggregator] = None,
        run_id: Optional[str] = None,
        record_steps: bool = True,
        release_on_finish: bool = True,
    ):
        validate_steps(config.steps, config.preloaded_outputs)

        self.config = config
        self.agent = agent
        self.store = store
        self.llm_config = llm_config
        self.registry = registry or RunRegistry()
        self.settings = settings or PipelineSettings()
        self.post_processor = post_processor
        self.aggregator = aggregator or ContextAggregator(
            store,
            config.context_options,
            summary_window=self.settings.summary_window_size,
            style_sample_chars=self.settings.style_sample_max_chars,
        )
        self.run_id = run_id or str(uuid.uuid4())
        self.record_steps = record_steps
        self.release_on_finish = release_on_finish

        self.outputs: Dict[int, StepOutput] = {}
        self.reports: List[PostProcessingReport] = []

        self._lock = threading.Lock()
        self._state = PipelineState.IDLE
        self._current_step = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._sink: Optional[EventSink] = None
        self._in_flight: Optional[int] = None

    @property
    def steps(self) -> List[Step]:
        return self.config.steps

    @property
    def total_steps(self) -> int:
        return len(self.config.steps)

    @property
    def state(self) -> PipelineState:
        with self._lock:
            return self._state

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def pause(self) -> bool:
        """Pause before the next step. No-op unless running."""
        with self._lock:
            if self._state != PipelineState.RUNNING:
                return False
            self._state = PipelineState.PAUSED
        logger.info(f"[AgentPipeline] Run {self.run_id} paused at step {self._current_step}")
        return True

    def resume(self) -> bool:
        """Continue a paused run. No-op unless paused."""
        with self._lock:
            if self._state != PipelineState.PAUSED:
                return False
            self._state = PipelineState.RUNNING
            self._wake()
        logger.info(f"[AgentPipeline] Run {self.run_id} resumed at step {self._current_step}")
        return True

    def cancel(self) -> bool:
        """Stop the run before its next step. Wakes a paused run."""
        with self._lock:
            if self._state not in (PipelineState.RUNNING, PipelineState.PAUSED):
                return False
            self._state = PipelineState.CANCELLED
            self._wake()
        logger.info(f"[AgentPipeline] Run {self.run_id} cancelled at step {self._current_step}")
        return True

    def progress(self) -> Tuple[int, int]:
        with self._lock:
            return self._current_step, self.total_steps

    def snapshot(self) -> PipelineRun:
        with self._lock:
            state = self._state
            current = self._current_step
            reports = list(self.reports)
        return PipelineRun(
            run_id=self.run_id,
            project_id=self.config.project_id,
            chapter_id=self.config.chapter_id,
            current_step=current,
            total_steps=self.total_steps,
            state=state,
            completed_steps=sorted(self.outputs),
            post_processing=[report.to_payload() for report in reports],
        )

    def _wake(self) -> None:
        # Caller holds self._lock
        if self._wakeup is None or self._loop is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._wakeup.set()
        else:
            self._loop.call_soon_threadsafe(self._wakeup.set)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _emit(
        self,
        event_type: PipelineEventType,
        data: Optional[Dict[str, Any]] = None,
        step_index: Optional[int] = None,
        step: Optional[Step] = None,
    ) -> None:
        event = PipelineEvent(
            type=event_type,
            run_id=self.run_id,
            step_index=step_index,
            role=step.role if step else None,
            data=data or {},
        )
        if self._sink is None:
            return
        outcome: Any = self._sink(event)
        if inspect.isawaitable(outcome):
            await outcome

    async def _emit_error(self, message: str) -> None:
        try:
            await self._emit(PipelineEventType.ERROR, {"message": message})
        except Exception as e:
            logger.error(f"[AgentPipeline] Failed to deliver error event for run {self.run_id}: {e}")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _gate(self) -> bool:
        """
        Block while paused. Returns False once the run has been cancelled.
        """
        with self._lock:
            state = self._state
        if state == PipelineState.CANCELLED:
            return False
        if state != PipelineState.PAUSED:
            return True

        await self._emit(PipelineEventType.PAUSED, {"step_index": self._current_step})
        while True:
            with self._lock:
                state = self._state
                if state == PipelineState.PAUSED:
                    self._wakeup.clear()
            if state != PipelineState.PAUSED:
                break
            await self._wakeup.wait()

        return state != PipelineState.CANCELLED

    async def _record(
        self,
        index: int,
        step: Step,
        status: StepStatus,
        output: Optional[StepOutput] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if not self.record_steps:
            return
        record = StepRecord(
            run_id=self.run_id,
            project_id=self.config.project_id,
            chapter_id=self.config.chapter_id,
            step_index=index,
            role=step.role,
            task_type=step.task_type,
            status=status,
            output=output.raw_text if output else None,
            token_usage=output.token_usage if output else None,
            error_message=error_message,
        )
        try:
            await self.store.record_step(record)
        except Exception as e:
            logger.warning(f"[AgentPipeline] Could not record step {index} ({status.value}): {e}")

    async def _run_step(self, index: int, step: Step, context_text: str) -> StepOutput:
        ensure_step_ready(self.steps, index, self.outputs.keys())

        agent_context = await build_agent_context(
            self.store,
            self.config.project_id,
            step.role,
            self.llm_config,
            chapter_id=self.config.chapter_id,
        )
        messages = build_step_messages(step, context_text, self.outputs)

        await self._emit(
            PipelineEventType.STEP_START,
            {"role": step.role.value, "step_index": index, "task_type": step.task_type},
            index,
            step,
        )
        self._in_flight = index
        await self._record(index, step, StepStatus.RUNNING)

        async def forward(chunk: str) -> None:
            await self._emit(
                PipelineEventType.STEP_STREAM_CHUNK,
                {"role": step.role.value, "text": chunk},
                index,
                step,
            )

        result = await self.agent.execute(agent_context, messages, on_chunk=forward)

        output = StepOutput(
            step_index=index,
            role=step.role,
            task_type=step.task_type,
            raw_text=result.text,
            token_usage=result.token_usage,
        )
        self.outputs[index] = output
        await self._emit(
            PipelineEventType.STEP_COMPLETE,
            {
                "role": step.role.value,
                "output": output.raw_text,
                "token_usage": output.token_usage.model_dump(),
            },
            index,
            step,
        )
        await self._record(index, step, StepStatus.COMPLETED, output)
        self._in_flight = None
        logger.info(
            f"[AgentPipeline] Step {index + 1}/{self.total_steps} ({step.role.value}) complete: "
            f"{len(output.raw_text)} chars, {output.token_usage.total} tokens"
        )
        return output

    async def _close_in_flight(self, status: StepStatus, message: str) -> None:
        """Replace the RUNNING record of a step that will never finish."""
        index = self._in_flight
        if index is None:
            return
        self._in_flight = None
        await self._record(index, self.steps[index], status, error_message=message)

    def _use_preloaded(self, index: int, step: Step) -> StepOutput:
        output = StepOutput(
            step_index=index,
            role=step.role,
            task_type=step.task_type,
            raw_text=self.config.preloaded_outputs[index],
            preloaded=True,
        )
        self.outputs[index] = output
        return output

    async def _post_process(self, output: StepOutput) -> None:
        if self.post_processor is None or not self.post_processor.handles(output.role):
            return
        try:
            report = await self.post_processor.process(
                self.config.project_id, self.config.chapter_id, output
            )
        except Exception as e:
            logger.error(f"[AgentPipeline] Post-processing failed for step {output.step_index}: {e}")
            return
        if report is None:
            return
        with self._lock:
            self.reports.append(report)
        await self._emit(
            PipelineEventType.POST_PROCESSED,
            report.to_payload(),
            output.step_index,
            self.steps[output.step_index],
        )

    def _escalate(self) -> bool:
        """Pause for review. False once the run has been cancelled."""
        with self._lock:
            if self._state == PipelineState.RUNNING:
                self._state = PipelineState.PAUSED
                return True
            return self._state == PipelineState.PAUSED

    def _result(self) -> PipelineResult:
        return PipelineResult(
            run_id=self.run_id,
            state=self.state,
            outputs=[self.outputs[i] for i in sorted(self.outputs)],
            reports=list(self.reports),
        )

    async def _finish_cancelled(self) -> PipelineResult:
        logger.info(f"[AgentPipeline] Run {self.run_id} stopped after cancellation")
        await self._emit_error(CANCELLED_MESSAGE)
        return self._result()

    async def execute(self, on_event: Optional[EventSink] = None) -> PipelineResult:
        """
        Run every step to a terminal state.

        Args:
            on_event: Called with each PipelineEvent; may be sync or async

        Returns:
            PipelineResult with the outputs gathered so far

        Raises:
            AgentExecutionError: a generation call failed; the run ends in error
            PipelineConfigurationError: the pipeline was already started
        """
        with self._lock:
            if self._state != PipelineState.IDLE:
                raise PipelineConfigurationError(f"Run {self.run_id} has already been started")
            self._state = PipelineState.RUNNING
            self._loop = asyncio.get_running_loop()
            self._wakeup = asyncio.Event()
        self._sink = on_event
        self.registry.add(self.run_id, self)

        logger.info(
            f"[AgentPipeline] Starting run {self.run_id} for project {self.config.project_id} "
            f"(chapter={self.config.chapter_id}, steps={self.total_steps}, "
            f"preloaded={len(self.config.preloaded_outputs)})"
        )

        try:
            await self._emit(
                PipelineEventType.PLAN,
                {"steps": [step.model_dump(mode="json") for step in self.steps]},
            )
            context_text = await self.aggregator.render(self.config.project_id, self.config.chapter_id)

            for index, step in enumerate(self.steps):
                if not await self._gate():
                    return await self._finish_cancelled()

                with self._lock:
                    self._current_step = index

                if index in self.config.preloaded_outputs:
                    output = self._use_preloaded(index, step)
                    await self._emit(
                        PipelineEventType.STEP_COMPLETE,
                        {"role": step.role.value, "output": output.raw_text, "preloaded": True},
                        index,
                        step,
                    )
                    continue

                output = await self._run_step(index, step, context_text)
                await self._post_process(output)

                if detect_escalation(output.raw_text, self.settings.escalation_marker) and self._escalate():
                    logger.info(
                        f"[AgentPipeline] Step {index} ({step.role.value}) requested consultation; waiting for review"
                    )
                    await self._emit(
                        PipelineEventType.ESCALATION_REQUIRED,
                        {"role": step.role.value, "raw_text": output.raw_text},
                        index,
                        step,
                    )

            if not await self._gate():
                return await self._finish_cancelled()

            with self._lock:
                self._state = PipelineState.COMPLETED
                self._current_step = self.total_steps
            await self._emit(PipelineEventType.COMPLETED, {"steps_completed": len(self.outputs)})
            logger.info(f"[AgentPipeline] Run {self.run_id} completed")
            return self._result()

        except asyncio.CancelledError:
            with self._lock:
                self._state = PipelineState.CANCELLED
            logger.warning(f"[AgentPipeline] Run {self.run_id} task was cancelled")
            await self._close_in_flight(StepStatus.CANCELLED, CANCELLED_MESSAGE)
            await self._emit_error(CANCELLED_MESSAGE)
            raise
        except Exception as e:
            with self._lock:
                self._state = PipelineState.ERROR
            logger.error(f"[AgentPipeline] Run {self.run_id} failed at step {self._current_step}: {e}")
            await self._close_in_flight(StepStatus.FAILED, str(e))
            await self._emit_error(str(e))
            raise
        finally:
            if self.release_on_finish:
                self.registry.remove(self.run_id)
