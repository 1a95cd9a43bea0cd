"""
Narrative store interface.

The pipeline reads project state and writes artifacts through this interface;
the surrounding application owns the actual schema. InMemoryNarrativeStore is
used for local runs and tests, SupabaseNarrativeStore for deployments.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from ..models import (
    AgentConfigOverride,
    AgentRole,
    ChapterRecord,
    CharacterEntry,
    ForeshadowingItem,
    ForeshadowingStatus,
    GlossaryTerm,
    PlotPoint,
    StepRecord,
    StyleReference,
    WorldSettingEntry,
)


class NarrativeStore(ABC):
    """Persistence operations used by the context aggregator, appliers and orchestrator."""

    # Reads

    @abstractmethod
    async def get_plot_synopsis(self, project_id: str) -> Optional[str]:
        pass

    @abstractmethod
    async def list_characters(self, project_id: str) -> List[CharacterEntry]:
        pass

    @abstractmethod
    async def list_world_settings(self, project_id: str) -> List[WorldSettingEntry]:
        pass

    @abstractmethod
    async def list_plot_points(self, project_id: str) -> List[PlotPoint]:
        pass

    @abstractmethod
    async def list_chapters(self, project_id: str) -> List[ChapterRecord]:
        pass

    @abstractmethod
    async def get_chapter(self, chapter_id: str) -> Optional[ChapterRecord]:
        pass

    @abstractmethod
    async def list_foreshadowing(self, project_id: str) -> List[ForeshadowingItem]:
        pass

    @abstractmethod
    async def list_glossary(self, project_id: str) -> List[GlossaryTerm]:
        pass

    @abstractmethod
    async def list_style_references(self, project_id: str) -> List[StyleReference]:
        pass

    @abstractmethod
    async def get_agent_config(self, project_id: str, role: AgentRole) -> Optional[AgentConfigOverride]:
        pass

    @abstractmethod
    async def list_step_records(
        self, project_id: str, chapter_id: Optional[str] = None
    ) -> List[StepRecord]:
        pass

    # Writes

    @abstractmethod
    async def update_foreshadowing(
        self,
        item_id: str,
        status: ForeshadowingStatus,
        resolved_chapter_id: Optional[str] = None,
        resolved_context: Optional[str] = None,
    ) -> None:
        pass

    @abstractmethod
    async def insert_character(self, project_id: str, character: CharacterEntry) -> str:
        pass

    @abstractmethod
    async def insert_world_setting(self, project_id: str, entry: WorldSettingEntry) -> str:
        pass

    @abstractmethod
    async def update_chapter_content(self, chapter_id: str, content: str) -> None:
        pass

    @abstractmethod
    async def update_chapter_summary(self, chapter_id: str, brief: str, detailed: str) -> None:
        pass

    @abstractmethod
    async def record_step(self, record: StepRecord) -> None:
        pass


class InMemoryNarrativeStore(NarrativeStore):
    """Dict-backed store. Not shared between processes."""

    def __init__(self):
        self.synopses: Dict[str, str] = {}
        self.characters: Dict[str, List[CharacterEntry]] = {}
        self.world_settings: Dict[str, List[WorldSettingEntry]] = {}
        self.plot_points: Dict[str, List[PlotPoint]] = {}
        self.chapters: Dict[str, ChapterRecord] = {}
        self.chapter_projects: Dict[str, str] = {}
        self.foreshadowing: Dict[str, ForeshadowingItem] = {}
        self.foreshadowing_projects: Dict[str, str] = {}
        self.glossary: Dict[str, List[GlossaryTerm]] = {}
        self.style_references: Dict[str, List[StyleReference]] = {}
        self.agent_configs: Dict[Tuple[str, AgentRole], AgentConfigOverride] = {}
        self.step_records: Dict[Tuple[str, int], StepRecord] = {}

    # Seeding helpers

    def add_chapter(self, project_id: str, chapter: ChapterRecord) -> ChapterRecord:
        self.chapters[chapter.id] = chapter
        self.chapter_projects[chapter.id] = project_id
        return chapter

    def add_foreshadowing(self, project_id: str, item: ForeshadowingItem) -> ForeshadowingItem:
        self.foreshadowing[item.id] = item
        self.foreshadowing_projects[item.id] = project_id
        return item

    # Reads

    async def get_plot_synopsis(self, project_id: str) -> Optional[str]:
        return self.synopses.get(project_id)

    async def list_characters(self, project_id: str) -> List[CharacterEntry]:
        return list(self.characters.get(project_id, []))

    async def list_world_settings(self, project_id: str) -> List[WorldSettingEntry]:
        return list(self.world_settings.get(project_id, []))

    async def list_plot_points(self, project_id: str) -> List[PlotPoint]:
        return list(self.plot_points.get(project_id, []))

    async def list_chapters(self, project_id: str) -> List[ChapterRecord]:
        chapters = [
            chapter for chapter_id, chapter in self.chapters.items()
            if self.chapter_projects.get(chapter_id) == project_id
        ]
        return sorted(chapters, key=lambda c: c.chapter_number)

    async def get_chapter(self, chapter_id: str) -> Optional[ChapterRecord]:
        return self.chapters.get(chapter_id)

    async def list_foreshadowing(self, project_id: str) -> List[ForeshadowingItem]:
        return [
            item for item_id, item in self.foreshadowing.items()
            if self.foreshadowing_projects.get(item_id) == project_id
        ]

    async def list_glossary(self, project_id: str) -> List[GlossaryTerm]:
        return list(self.glossary.get(project_id, []))

    async def list_style_references(self, project_id: str) -> List[StyleReference]:
        return list(self.style_references.get(project_id, []))

    async def get_agent_config(self, project_id: str, role: AgentRole) -> Optional[AgentConfigOverride]:
        return self.agent_configs.get((project_id, AgentRole(role)))

    async def list_step_records(
        self, project_id: str, chapter_id: Optional[str] = None
    ) -> List[StepRecord]:
        records = [
            record for record in self.step_records.values()
            if record.project_id == project_id
            and (chapter_id is None or record.chapter_id == chapter_id)
        ]
        return sorted(records, key=lambda r: (r.updated_at, r.step_index))

    # Writes

    async def update_foreshadowing(
        self,
        item_id: str,
        status: ForeshadowingStatus,
        resolved_chapter_id: Optional[str] = None,
        resolved_context: Optional[str] = None,
    ) -> None:
        item = self.foreshadowing.get(item_id)
        if item is None:
            raise KeyError(f"Foreshadowing {item_id} not found")
        updates = {"status": ForeshadowingStatus(status)}
        if resolved_chapter_id is not None:
            updates["resolved_chapter_id"] = resolved_chapter_id
        if resolved_context is not None:
            updates["resolved_context"] = resolved_context
        self.foreshadowing[item_id] = item.model_copy(update=updates)

    async def insert_character(self, project_id: str, character: CharacterEntry) -> str:
        character_id = str(uuid.uuid4())
        stored = character.model_copy(update={"id": character_id})
        self.characters.setdefault(project_id, []).append(stored)
        return character_id

    async def insert_world_setting(self, project_id: str, entry: WorldSettingEntry) -> str:
        entry_id = str(uuid.uuid4())
        stored = entry.model_copy(update={"id": entry_id})
        self.world_settings.setdefault(project_id, []).append(stored)
        return entry_id

    async def update_chapter_content(self, chapter_id: str, content: str) -> None:
        chapter = self.chapters.get(chapter_id)
        if chapter is None:
            raise KeyError(f"Chapter {chapter_id} not found")
        self.chapters[chapter_id] = chapter.model_copy(update={"content": content})

    async def update_chapter_summary(self, chapter_id: str, brief: str, detailed: str) -> None:
        chapter = self.chapters.get(chapter_id)
        if chapter is None:
            raise KeyError(f"Chapter {chapter_id} not found")
        self.chapters[chapter_id] = chapter.model_copy(
            update={"summary_brief": brief, "summary_detailed": detailed}
        )

    async def record_step(self, record: StepRecord) -> None:
        self.step_records[(record.run_id, record.step_index)] = record
