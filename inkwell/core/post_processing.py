"""
Post-step processing: turns designated steps' output into stored state.

    writer              -> chapter content
    editor              -> revised chapter content, then a fresh chapter summary
    continuity_checker  -> foreshadowing status changes and new entities

Nothing here aborts a run; failures are collected on the report.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import PipelineSettings
from ..models import AgentRole, ConsistencyResult, StepOutput
from ..services.narrative_store import NarrativeStore
from .appliers import ApplyResult, EntityExtractionResult, extract_entities, update_foreshadowing
from .parsing import ParseTier, extract_editor_content, parse_consistency_result, strip_split_suggestions
from .summaries import ChapterSummarizer

logger = logging.getLogger("inkwell.post_processing")

POST_PROCESSED_ROLES = (AgentRole.WRITER, AgentRole.EDITOR, AgentRole.CONTINUITY_CHECKER)


@dataclass
class PostProcessingReport:
    step_index: int
    role: AgentRole
    content_saved: bool = False
    summary_generated: bool = False
    consistency: Optional[ConsistencyResult] = None
    parse_tier: Optional[ParseTier] = None
    foreshadowing: Optional[ApplyResult] = None
    entities: Optional[EntityExtractionResult] = None
    errors: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "step_index": self.step_index,
            "role": self.role.value,
            "content_saved": self.content_saved,
            "summary_generated": self.summary_generated,
            "errors": list(self.errors),
        }
        if self.consistency is not None:
            payload["consistency"] = self.consistency.model_dump(mode="json")
            payload["parse_tier"] = self.parse_tier.value if self.parse_tier else None
        if self.foreshadowing is not None:
            payload["foreshadowing_updated"] = self.foreshadowing.applied
        if self.entities is not None:
            payload["characters_added"] = self.entities.characters.applied
            payload["world_settings_added"] = self.entities.world_settings.applied
        return payload


class StepPostProcessor:
    """Applies the side effects attached to writer, editor and continuity steps."""

    def __init__(
        self,
        store: NarrativeStore,
        summarizer: Optional[ChapterSummarizer] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        self.store = store
        self.summarizer = summarizer
        self.settings = settings or PipelineSettings()

    def handles(self, role: AgentRole) -> bool:
        return AgentRole(role) in POST_PROCESSED_ROLES

    async def process(
        self, project_id: str, chapter_id: Optional[str], output: StepOutput
    ) -> Optional[PostProcessingReport]:
        if not self.handles(output.role):
            return None

        report = PostProcessingReport(step_index=output.step_index, role=output.role)
        if output.role == AgentRole.WRITER:
            await self._save_content(chapter_id, strip_split_suggestions(output.raw_text), report)
        elif output.role == AgentRole.EDITOR:
            await self._save_content(chapter_id, extract_editor_content(output.raw_text), report)
            if report.content_saved:
                await self._summarize(chapter_id, report)
        elif output.role == AgentRole.CONTINUITY_CHECKER:
            await self._apply_consistency(project_id, chapter_id, output.raw_text, report)

        if report.errors:
            logger.warning(
                f"[StepPostProcessor] Step {output.step_index} ({output.role.value}) finished with "
                f"{len(report.errors)} non-fatal error(s)"
            )
        return report

    async def _save_content(
        self, chapter_id: Optional[str], content: str, report: PostProcessingReport
    ) -> None:
        if not chapter_id:
            return
        if not content:
            report.errors.append("No chapter text could be extracted from the output")
            return
        try:
            await self.store.update_chapter_content(chapter_id, content)
            report.content_saved = True
        except Exception as e:
            logger.error(f"[StepPostProcessor] Failed to save chapter {chapter_id}: {e}")
            report.errors.append(f"Failed to save chapter content: {e}")

    async def _summarize(self, chapter_id: Optional[str], report: PostProcessingReport) -> None:
        if not chapter_id or self.summarizer is None:
            return
        try:
            await self.summarizer.generate(chapter_id)
            report.summary_generated = True
        except Exception as e:
            logger.warning(f"[StepPostProcessor] Summary generation failed for chapter {chapter_id}: {e}")
            report.errors.append(f"Summary generation failed: {e}")

    async def _apply_consistency(
        self,
        project_id: str,
        chapter_id: Optional[str],
        raw_text: str,
        report: PostProcessingReport,
    ) -> None:
        outcome = parse_consistency_result(raw_text, max_chars=self.settings.fallback_note_max_chars)
        report.consistency = outcome.value
        report.parse_tier = outcome.tier

        if outcome.value.foreshadowing_updates:
            if chapter_id:
                try:
                    report.foreshadowing = await update_foreshadowing(
                        self.store, project_id, chapter_id, outcome.value.foreshadowing_updates
                    )
                    report.errors.extend(report.foreshadowing.errors)
                except Exception as e:
                    report.errors.append(f"Foreshadowing update failed: {e}")
            else:
                report.errors.append("Foreshadowing updates need a chapter; skipped")

        if outcome.value.new_characters or outcome.value.new_world_settings:
            try:
                report.entities = await extract_entities(
                    self.store,
                    project_id,
                    outcome.value.new_characters,
                    outcome.value.new_world_settings,
                )
                report.errors.extend(report.entities.errors)
            except Exception as e:
                report.errors.append(f"Entity extraction failed: {e}")
