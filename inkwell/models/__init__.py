"""
Inkwell Data Models Module
Pydantic schemas for the chapter generation pipeline.
"""

from .schemas import (
    ROLE_LABELS,
    AgentConfigOverride,
    AgentContext,
    AgentResult,
    AgentRole,
    ChapterContext,
    ChapterRecord,
    ChapterSummary,
    CharacterEntry,
    ChatMessage,
    ConsistencyIssue,
    ConsistencyResult,
    ContextOptions,
    ForeshadowingItem,
    ForeshadowingStatus,
    ForeshadowingUpdate,
    GlossaryTerm,
    NewCharacter,
    NewWorldSetting,
    PipelineConfig,
    PipelineEvent,
    PipelineEventType,
    PipelineRun,
    PipelineState,
    PlotPoint,
    ProjectContext,
    Step,
    StepOutput,
    StepRecord,
    StepStatus,
    StyleReference,
    TokenUsage,
    WorldSettingEntry,
)

__all__ = [
    "ROLE_LABELS",
    "AgentConfigOverride",
    "AgentContext",
    "AgentResult",
    "AgentRole",
    "ChapterContext",
    "ChapterRecord",
    "ChapterSummary",
    "CharacterEntry",
    "ChatMessage",
    "ConsistencyIssue",
    "ConsistencyResult",
    "ContextOptions",
    "ForeshadowingItem",
    "ForeshadowingStatus",
    "ForeshadowingUpdate",
    "GlossaryTerm",
    "NewCharacter",
    "NewWorldSetting",
    "PipelineConfig",
    "PipelineEvent",
    "PipelineEventType",
    "PipelineRun",
    "PipelineState",
    "PlotPoint",
    "ProjectContext",
    "Step",
    "StepOutput",
    "StepRecord",
    "StepStatus",
    "StyleReference",
    "TokenUsage",
    "WorldSettingEntry",
]
