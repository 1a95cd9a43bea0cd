"""
Inkwell Pipeline Worker
Runs chapter pipelines in the background and publishes their events to Redis
Streams for SSE clients.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Set, Tuple

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .agents import GenerationAgent
from .config import (
    LLMConfiguration,
    PipelineSettings,
    create_default_config_from_env,
    get_all_models,
    get_models_for_role,
    load_pipeline_settings,
)
from .core.errors import InkwellError, PipelineConfigurationError
from .core.pipeline import AgentPipeline
from .core.plans import build_edit_pipeline, build_writing_pipeline
from .core.post_processing import StepPostProcessor
from .core.registry import RunRegistry
from .core.resume import can_launch, preloaded_outputs, summarize_records
from .core.summaries import ChapterSummarizer
from .models import (
    AgentRole,
    ContextOptions,
    PipelineConfig,
    PipelineEvent,
    PipelineEventType,
    PipelineRun,
    Step,
)
from .services import (
    InMemoryNarrativeStore,
    NarrativeStore,
    RedisStreamsService,
    SupabaseNarrativeStore,
    UnifiedModelClient,
)

load_dotenv()

logger = logging.getLogger("inkwell")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(handler)

MAX_INSTRUCTIONS_LENGTH = 5000
TERMINAL_EVENT_TYPES = {t.value for t in PipelineEventType if t.is_terminal}


class PipelineWorker:
    """
    Owns the shared services and the background task of every run.
    """

    def __init__(
        self,
        llm_config: Optional[LLMConfiguration] = None,
        settings: Optional[PipelineSettings] = None,
        store: Optional[NarrativeStore] = None,
        redis_streams: Optional[RedisStreamsService] = None,
        model_client: Optional[UnifiedModelClient] = None,
    ):
        self.llm_config = llm_config or create_default_config_from_env()
        self.settings = settings or load_pipeline_settings()
        self.store = store
        self.redis_streams = redis_streams
        self.model_client = model_client
        self.registry = RunRegistry()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._finished: Dict[str, PipelineRun] = {}
        self._reserved: Set[Tuple[str, Optional[str]]] = set()

    async def initialize(self) -> None:
        """Connect Redis Streams and the narrative store."""
        if self.redis_streams is None:
            streams = RedisStreamsService(self.settings.redis_url)
            try:
                await streams.connect()
                self.redis_streams = streams
                logger.info(f"Pipeline worker connected to Redis at {self.settings.redis_url}")
            except Exception as e:
                logger.warning(f"Redis not available ({e}) - events will not be streamed")

        if self.store is None:
            supabase = SupabaseNarrativeStore(self.settings.supabase_url or None, self.settings.supabase_key or None)
            if await supabase.connect():
                self.store = supabase
                logger.info("Pipeline worker connected to Supabase")
            else:
                self.store = InMemoryNarrativeStore()
                logger.warning("Supabase not available - using in-memory narrative store")

        if self.model_client is None:
            self.model_client = UnifiedModelClient(self.llm_config)

    async def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        if self.redis_streams:
            await self.redis_streams.disconnect()
        if self.model_client:
            await self.model_client.close()

    def _create_event_sink(self, run_id: str):
        """Sink that appends each event to the run's Redis stream."""

        async def sink(event: PipelineEvent) -> None:
            if not self.redis_streams:
                return
            try:
                await self.redis_streams.publish_event(event)
            except Exception as e:
                logger.warning(f"Failed to publish {event.type.value} for run {run_id}: {e}")

        return sink

    def _build_post_processor(self) -> StepPostProcessor:
        provider, model = self.llm_config.agent_models.for_role(AgentRole.EDITOR.value)
        summarizer = ChapterSummarizer(self.store, self.model_client, provider, model, self.settings)
        return StepPostProcessor(self.store, summarizer, self.settings)

    def find_active_run(self, project_id: str, chapter_id: Optional[str]) -> Optional[str]:
        for run_id in self.registry.active_ids():
            pipeline = self.registry.get(run_id)
            if pipeline and pipeline.config.project_id == project_id and pipeline.config.chapter_id == chapter_id:
                return run_id
        return None

    def reserve_target(self, project_id: str, chapter_id: Optional[str]) -> bool:
        """
        Claim a chapter while its run is being prepared. False if another
        request holds it or a run is already active for it.
        """
        target = (project_id, chapter_id)
        if target in self._reserved or self.find_active_run(project_id, chapter_id):
            return False
        self._reserved.add(target)
        return True

    def release_target(self, project_id: str, chapter_id: Optional[str]) -> None:
        self._reserved.discard((project_id, chapter_id))

    async def resume_outputs(self, config: PipelineConfig, previous_run_id: str) -> Dict[int, str]:
        """
        Outputs of a previous run's completed prefix.

        Raises:
            PipelineConfigurationError: the previous run still has steps in flight
        """
        records = [
            record
            for record in await self.store.list_step_records(config.project_id, config.chapter_id)
            if record.run_id == previous_run_id
        ]
        status = summarize_records(len(config.steps), records)
        if not can_launch(status):
            raise PipelineConfigurationError(f"Run {previous_run_id} still has steps in progress")
        return preloaded_outputs(len(config.steps), records)

    def start_run(self, config: PipelineConfig, run_id: Optional[str] = None) -> AgentPipeline:
        pipeline = AgentPipeline(
            config,
            GenerationAgent(self.model_client),
            self.store,
            self.llm_config,
            registry=self.registry,
            settings=self.settings,
            post_processor=self._build_post_processor(),
            run_id=run_id or str(uuid.uuid4()),
            release_on_finish=False,
        )
        self.registry.add(pipeline.run_id, pipeline)
        self._tasks[pipeline.run_id] = asyncio.create_task(self._run(pipeline))
        return pipeline

    async def _run(self, pipeline: AgentPipeline) -> None:
        try:
            result = await pipeline.execute(self._create_event_sink(pipeline.run_id))
            logger.info(f"Run {pipeline.run_id} finished: {result.state.value}")
        except InkwellError as e:
            logger.error(f"Run {pipeline.run_id} failed: {e}")
        except Exception as e:
            logger.exception(f"Run {pipeline.run_id} crashed: {e}")
        finally:
            self._finished[pipeline.run_id] = pipeline.snapshot()
            self.registry.remove(pipeline.run_id)
            self._tasks.pop(pipeline.run_id, None)

    def get_run(self, run_id: str) -> Optional[PipelineRun]:
        pipeline = self.registry.get(run_id)
        if pipeline is not None:
            return pipeline.snapshot()
        return self._finished.get(run_id)


limiter = Limiter(key_func=get_remote_address)

app = FastAPI(title="Inkwell Pipeline Worker")

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=load_pipeline_settings().origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

worker: Optional[PipelineWorker] = None


class PipelineRequest(BaseModel):
    project_id: str
    chapter_id: Optional[str] = None
    chapter_number: Optional[int] = Field(None, ge=1)
    plan: str = Field("write", pattern="^(write|edit)$")
    steps: Optional[List[Step]] = None  # Explicit step list; overrides plan
    instructions: Optional[str] = Field(None, max_length=MAX_INSTRUCTIONS_LENGTH)
    context_options: ContextOptions = Field(default_factory=ContextOptions)
    resume_from_run_id: Optional[str] = None


class PipelineResponse(BaseModel):
    success: bool
    run_id: str
    total_steps: int
    message: str


def _require_worker() -> PipelineWorker:
    if not worker:
        raise HTTPException(status_code=503, detail="Worker not initialized")
    return worker


def _require_pipeline(run_id: str) -> AgentPipeline:
    pipeline = _require_worker().registry.get(run_id)
    if pipeline is None:
        raise HTTPException(status_code=404, detail="Run not found or not active")
    return pipeline


async def _resolve_steps(active: PipelineWorker, body: PipelineRequest) -> List[Step]:
    if body.steps:
        return body.steps

    chapter_number = body.chapter_number
    if chapter_number is None and body.chapter_id:
        chapter = await active.store.get_chapter(body.chapter_id)
        if chapter is not None:
            chapter_number = chapter.chapter_number
    if chapter_number is None:
        raise HTTPException(status_code=400, detail="Either steps or a chapter is required")

    if body.plan == "edit":
        return build_edit_pipeline(chapter_number, body.instructions)
    return build_writing_pipeline(chapter_number, body.instructions)


@app.on_event("startup")
async def startup():
    global worker
    if worker is None:
        worker = PipelineWorker()
        await worker.initialize()


@app.on_event("shutdown")
async def shutdown():
    if worker:
        await worker.shutdown()


@app.get("/health")
async def health():
    return {"status": "ok", "service": "inkwell-pipeline-worker"}


@app.post("/pipelines", response_model=PipelineResponse)
@limiter.limit("10/minute")
async def start_pipeline(body: PipelineRequest, request: Request):
    """Start a pipeline run in the background."""
    active = _require_worker()

    running = active.find_active_run(body.project_id, body.chapter_id)
    if running:
        raise HTTPException(status_code=409, detail=f"Run {running} is already active for this chapter")
    if not active.reserve_target(body.project_id, body.chapter_id):
        raise HTTPException(status_code=409, detail="A run is already starting for this chapter")

    try:
        steps = await _resolve_steps(active, body)
        config = PipelineConfig(
            project_id=body.project_id,
            chapter_id=body.chapter_id,
            steps=steps,
            context_options=body.context_options,
        )
        if body.resume_from_run_id:
            config.preloaded_outputs = await active.resume_outputs(config, body.resume_from_run_id)
        pipeline = active.start_run(config)
    except PipelineConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        active.release_target(body.project_id, body.chapter_id)

    resumed = len(config.preloaded_outputs)
    return PipelineResponse(
        success=True,
        run_id=pipeline.run_id,
        total_steps=pipeline.total_steps,
        message=(
            f"Pipeline started ({resumed} step(s) restored). Connect to the SSE endpoint for updates."
            if resumed else "Pipeline started. Connect to the SSE endpoint for updates."
        ),
    )


@app.get("/pipelines")
async def list_pipelines():
    active = _require_worker()
    runs = [active.get_run(run_id) for run_id in active.registry.active_ids()]
    return {"runs": [run.model_dump(mode="json") for run in runs if run is not None]}


@app.get("/pipelines/{run_id}/events")
async def stream_events(run_id: str, request: Request):
    """Stream a run's events via SSE, replaying anything already published."""
    active = _require_worker()
    if not active.redis_streams:
        raise HTTPException(status_code=503, detail="Event streaming not available")
    streams = active.redis_streams

    async def event_generator():
        existing = await streams.get_events(run_id, start_id="0", count=1000)
        last_id = "0"
        for event in existing:
            yield f"data: {json.dumps(event)}\n\n"
            last_id = event.get("id", last_id)
            if event.get("type") in TERMINAL_EVENT_TYPES:
                return

        async for event in streams.stream_events(run_id, start_id=last_id):
            yield f"data: {json.dumps(event)}\n\n"
            if event.get("type") in TERMINAL_EVENT_TYPES:
                break

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


def _control_response(run_id: str, changed: bool, pipeline: AgentPipeline, done: str, skipped: str) -> Dict[str, Any]:
    return {
        "success": changed,
        "run_id": run_id,
        "state": pipeline.state.value,
        "message": done if changed else skipped,
    }


@app.post("/pipelines/{run_id}/pause")
async def pause_pipeline(run_id: str):
    pipeline = _require_pipeline(run_id)
    return _control_response(run_id, pipeline.pause(), pipeline, "Pipeline paused", "Pipeline is not running")


@app.post("/pipelines/{run_id}/resume")
async def resume_pipeline(run_id: str):
    pipeline = _require_pipeline(run_id)
    return _control_response(run_id, pipeline.resume(), pipeline, "Pipeline resumed", "Pipeline is not paused")


@app.post("/pipelines/{run_id}/cancel")
async def cancel_pipeline(run_id: str):
    pipeline = _require_pipeline(run_id)
    return _control_response(run_id, pipeline.cancel(), pipeline, "Pipeline cancelled", "Pipeline is not active")


@app.get("/pipelines/{run_id}/status")
async def get_pipeline_status(run_id: str):
    run = _require_worker().get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return {
        "run_id": run_id,
        "state": run.state.value,
        "current_step": run.current_step,
        "total_steps": run.total_steps,
        "completed_steps": run.completed_steps,
        "post_processing": run.post_processing,
    }


@app.get("/models")
@limiter.limit("30/minute")
async def get_available_models(request: Request, role: Optional[str] = None):
    """Model catalog, optionally narrowed to the models recommended for a role."""
    if role:
        try:
            AgentRole(role)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown role: {role}")
        return {"role": role, "models": get_models_for_role(role)}
    return {"models": get_all_models()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
