"""
Pydantic data models for Inkwell.
Covers pipeline steps and events, the narrative entities read from the store,
and the structured facts extracted from agent output.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AgentRole(str, Enum):
    """Agent roles that can appear in a pipeline step."""
    COORDINATOR = "coordinator"
    PLOT_ARCHITECT = "plot_architect"
    WORLD_BUILDER = "world_builder"
    CHARACTER_MANAGER = "character_manager"
    WRITER = "writer"
    EDITOR = "editor"
    CONTINUITY_CHECKER = "continuity_checker"
    FIXER = "fixer"


ROLE_LABELS: Dict[AgentRole, str] = {
    AgentRole.COORDINATOR: "Coordinator",
    AgentRole.PLOT_ARCHITECT: "Plot Architect",
    AgentRole.WORLD_BUILDER: "World Builder",
    AgentRole.CHARACTER_MANAGER: "Character Manager",
    AgentRole.WRITER: "Writer",
    AgentRole.EDITOR: "Editor",
    AgentRole.CONTINUITY_CHECKER: "Continuity Checker",
    AgentRole.FIXER: "Fixer",
}


class PipelineState(str, Enum):
    """Lifecycle state of a pipeline run."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.COMPLETED, PipelineState.CANCELLED, PipelineState.ERROR)


class ForeshadowingStatus(str, Enum):
    """
    Foreshadowing lifecycle. Declaration order is the progression order;
    an item may only move forward through it.
    """
    PLANTED = "planted"
    HINTED = "hinted"
    PARTIALLY_RESOLVED = "partially_resolved"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"

    @property
    def rank(self) -> int:
        return list(ForeshadowingStatus).index(self)

    @property
    def is_open(self) -> bool:
        return self not in (ForeshadowingStatus.RESOLVED, ForeshadowingStatus.ABANDONED)


class StepStatus(str, Enum):
    """Persisted status of one step execution."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PipelineEventType(str, Enum):
    PLAN = "plan"
    STEP_START = "step_start"
    STEP_STREAM_CHUNK = "step_stream_chunk"
    STEP_COMPLETE = "step_complete"
    POST_PROCESSED = "post_processed"
    ESCALATION_REQUIRED = "escalation_required"
    PAUSED = "paused"
    ERROR = "error"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineEventType.ERROR, PipelineEventType.COMPLETED)


# ============================================================================
# Pipeline Models
# ============================================================================

class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str = Field(default="user", pattern="^(user|assistant)$")
    content: str


class Step(BaseModel):
    """One unit of pipeline work. Immutable once constructed."""
    model_config = ConfigDict(frozen=True)

    role: AgentRole
    task_type: str
    description: str = ""
    messages: List[ChatMessage] = Field(default_factory=list)
    depends_on: List[int] = Field(default_factory=list)


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


class StepOutput(BaseModel):
    """Raw result of one executed (or preloaded) step."""
    step_index: int
    role: AgentRole
    task_type: str = ""
    raw_text: str
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    preloaded: bool = False


class ContextOptions(BaseModel):
    """Optional sections of the rendered project context."""
    include_plot_points: bool = True
    include_style_references: bool = True
    include_chapter_summaries: bool = False
    include_chapter_synopses: bool = False


class PipelineConfig(BaseModel):
    """Everything the orchestrator needs to start a run."""
    project_id: str
    chapter_id: Optional[str] = None
    steps: List[Step]
    preloaded_outputs: Dict[int, str] = Field(default_factory=dict)
    context_options: ContextOptions = Field(default_factory=ContextOptions)


class PipelineRun(BaseModel):
    """Point-in-time view of a run, safe to hand to external callers."""
    run_id: str
    project_id: str
    chapter_id: Optional[str] = None
    current_step: int
    total_steps: int
    state: PipelineState
    completed_steps: List[int] = Field(default_factory=list)
    post_processing: List[Dict[str, Any]] = Field(default_factory=list)


class PipelineEvent(BaseModel):
    """A single entry in a run's event stream."""
    type: PipelineEventType
    run_id: str
    step_index: Optional[int] = None
    role: Optional[AgentRole] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat())

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ============================================================================
# Agent Models
# ============================================================================

class AgentContext(BaseModel):
    """Resolved configuration for one role inside one project."""
    project_id: str
    chapter_id: Optional[str] = None
    role: AgentRole
    system_prompt: str
    provider: str
    model: str
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    custom_instructions: Optional[str] = None
    style_profile: Optional[str] = None


class AgentResult(BaseModel):
    role: AgentRole
    text: str
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    stop_reason: Optional[str] = None


class AgentConfigOverride(BaseModel):
    """Per-project override of a role's defaults, as stored by the application."""
    role: AgentRole
    system_prompt: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    custom_instructions: Optional[str] = None
    style_profile: Optional[str] = None


# ============================================================================
# Narrative Entities
# ============================================================================

class CharacterEntry(BaseModel):
    id: Optional[str] = None
    name: str
    role: str = "minor"
    description: Optional[str] = None
    speech_pattern: Optional[str] = None


class WorldSettingEntry(BaseModel):
    id: Optional[str] = None
    category: str = "misc"
    title: str
    content: str
    sort_order: int = 0


class PlotPoint(BaseModel):
    id: Optional[str] = None
    title: str
    description: str = ""
    act: str = ""
    sort_order: int = 0
    chapter_id: Optional[str] = None


class ForeshadowingItem(BaseModel):
    id: str
    title: str
    description: str = ""
    status: ForeshadowingStatus = ForeshadowingStatus.PLANTED
    planted_context: Optional[str] = None
    target_chapter: Optional[int] = None
    resolved_chapter_id: Optional[str] = None
    resolved_context: Optional[str] = None


class GlossaryTerm(BaseModel):
    term: str
    reading: Optional[str] = None
    definition: str = ""
    category: Optional[str] = None


class StyleReference(BaseModel):
    title: str
    style_notes: Optional[str] = None
    sample_text: Optional[str] = None
    is_active: bool = True


class ChapterRecord(BaseModel):
    id: str
    chapter_number: int
    title: Optional[str] = None
    synopsis: Optional[str] = None
    summary_brief: Optional[str] = None
    summary_detailed: Optional[str] = None
    content: Optional[str] = None


class ProjectContext(BaseModel):
    """Snapshot of a project's narrative state, read once per run."""
    project_id: str
    plot_synopsis: Optional[str] = None
    characters: List[CharacterEntry] = Field(default_factory=list)
    world_settings: List[WorldSettingEntry] = Field(default_factory=list)
    plot_points: List[PlotPoint] = Field(default_factory=list)
    active_foreshadowing: List[ForeshadowingItem] = Field(default_factory=list)
    glossary: List[GlossaryTerm] = Field(default_factory=list)
    style_references: List[StyleReference] = Field(default_factory=list)
    chapters: List[ChapterRecord] = Field(default_factory=list)


class ChapterContext(BaseModel):
    """Chapter-scoped overlay rendered inside the project context."""
    chapter_id: str
    chapter_number: int
    title: Optional[str] = None
    synopsis: Optional[str] = None
    plot_points: List[PlotPoint] = Field(default_factory=list)
    previous_chapter_number: Optional[int] = None
    previous_chapter_summary: Optional[str] = None
    earlier_summaries: List[ChapterRecord] = Field(default_factory=list)


# ============================================================================
# Parsed Agent Output
# ============================================================================

class ConsistencyIssue(BaseModel):
    severity: str = Field(default="info", pattern="^(error|warning|info)$")
    category: str = "general"
    description: str = ""
    location: Optional[str] = None
    suggestion: Optional[str] = None


class ForeshadowingUpdate(BaseModel):
    action: str
    title: str
    details: str = ""
    suggested_status: Optional[str] = None
    resolved_context: Optional[str] = None


class NewCharacter(BaseModel):
    name: str
    role: Optional[str] = None
    description: Optional[str] = None
    appearance: Optional[str] = None
    personality: Optional[str] = None
    speech_pattern: Optional[str] = None


class NewWorldSetting(BaseModel):
    category: Optional[str] = None
    title: str = ""
    content: str = ""


class ConsistencyResult(BaseModel):
    overall_consistency: str = Field(default="medium", pattern="^(high|medium|low)$")
    issues: List[ConsistencyIssue] = Field(default_factory=list)
    foreshadowing_updates: List[ForeshadowingUpdate] = Field(default_factory=list)
    new_characters: List[NewCharacter] = Field(default_factory=list)
    new_world_settings: List[NewWorldSetting] = Field(default_factory=list)


class ChapterSummary(BaseModel):
    brief: str
    detailed: str


# ============================================================================
# Step Records (resumability)
# ============================================================================

class StepRecord(BaseModel):
    """Persisted record of one step's execution, keyed by run and step index."""
    run_id: str
    project_id: str
    chapter_id: Optional[str] = None
    step_index: int
    role: AgentRole
    task_type: str = ""
    status: StepStatus
    output: Optional[str] = None
    token_usage: Optional[TokenUsage] = None
    error_message: Optional[str] = None
    updated_at: str = Field(default_factory=lambda: datetime.utcnow().isoformat())
