"""
Supabase-backed narrative store for Inkwell.

Reads degrade to empty results when a query fails so a run can still render
whatever context is available. Writes raise, so the appliers can report the
failed item and move on.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

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
from .narrative_store import NarrativeStore

logger = logging.getLogger("inkwell.services.supabase")


class SupabaseNarrativeStore(NarrativeStore):
    """NarrativeStore implementation over the project's Supabase tables."""

    def __init__(self, supabase_url: Optional[str] = None, supabase_key: Optional[str] = None):
        """
        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase service role key (for server-side operations)
        """
        self.supabase_url = supabase_url or os.getenv("SUPABASE_URL")
        self.supabase_key = supabase_key or os.getenv("SUPABASE_SERVICE_KEY")
        self.client = None
        self._connected = False

    async def connect(self) -> bool:
        """
        Connect to Supabase.

        Returns:
            True if connection successful, False otherwise
        """
        if not self.supabase_url or not self.supabase_key:
            return False

        try:
            from supabase import Client, create_client
            self.client: Client = create_client(self.supabase_url, self.supabase_key)
            self._connected = True
            return True
        except Exception as e:
            logger.error(f"Failed to connect to Supabase: {e}")
            self._connected = False
            return False

    @property
    def is_connected(self) -> bool:
        return self._connected and self.client is not None

    def _require_client(self):
        if not self.is_connected:
            raise RuntimeError("Supabase client not connected. Call connect() first.")
        return self.client

    def _select(self, table: str, column: str, value: Any, order: Optional[str] = None) -> List[Dict[str, Any]]:
        if not self.is_connected:
            return []
        try:
            query = self.client.table(table).select("*").eq(column, value)
            if order:
                query = query.order(order)
            result = query.execute()
            return result.data or []
        except Exception as e:
            logger.warning(f"Failed to read {table} for {column}={value}: {e}")
            return []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_plot_synopsis(self, project_id: str) -> Optional[str]:
        rows = self._select("plot_structures", "project_id", project_id)
        return rows[0].get("synopsis") if rows else None

    async def list_characters(self, project_id: str) -> List[CharacterEntry]:
        return [
            CharacterEntry(
                id=row.get("id"),
                name=row.get("name", ""),
                role=row.get("role") or "minor",
                description=row.get("description"),
                speech_pattern=row.get("speech_pattern"),
            )
            for row in self._select("characters", "project_id", project_id, order="created_at")
        ]

    async def list_world_settings(self, project_id: str) -> List[WorldSettingEntry]:
        return [
            WorldSettingEntry(
                id=row.get("id"),
                category=row.get("category") or "misc",
                title=row.get("title", ""),
                content=row.get("content", ""),
                sort_order=row.get("sort_order") or 0,
            )
            for row in self._select("world_settings", "project_id", project_id, order="sort_order")
        ]

    async def list_plot_points(self, project_id: str) -> List[PlotPoint]:
        return [
            PlotPoint(
                id=row.get("id"),
                title=row.get("title", ""),
                description=row.get("description") or "",
                act=row.get("act") or "",
                sort_order=row.get("sort_order") or 0,
                chapter_id=row.get("chapter_id"),
            )
            for row in self._select("plot_points", "project_id", project_id, order="sort_order")
        ]

    async def list_chapters(self, project_id: str) -> List[ChapterRecord]:
        return [
            self._chapter_from_row(row)
            for row in self._select("chapters", "project_id", project_id, order="chapter_number")
        ]

    async def get_chapter(self, chapter_id: str) -> Optional[ChapterRecord]:
        rows = self._select("chapters", "id", chapter_id)
        return self._chapter_from_row(rows[0]) if rows else None

    @staticmethod
    def _chapter_from_row(row: Dict[str, Any]) -> ChapterRecord:
        return ChapterRecord(
            id=row["id"],
            chapter_number=row.get("chapter_number", 0),
            title=row.get("title"),
            synopsis=row.get("synopsis"),
            summary_brief=row.get("summary_brief"),
            summary_detailed=row.get("summary_detailed"),
            content=row.get("content"),
        )

    async def list_foreshadowing(self, project_id: str) -> List[ForeshadowingItem]:
        items = []
        for row in self._select("foreshadowing", "project_id", project_id):
            try:
                status = ForeshadowingStatus(row.get("status") or "planted")
            except ValueError:
                logger.warning(f"Unknown foreshadowing status '{row.get('status')}' on {row.get('id')}")
                status = ForeshadowingStatus.PLANTED
            items.append(ForeshadowingItem(
                id=row["id"],
                title=row.get("title", ""),
                description=row.get("description") or "",
                status=status,
                planted_context=row.get("planted_context"),
                target_chapter=row.get("target_chapter"),
                resolved_chapter_id=row.get("resolved_chapter_id"),
                resolved_context=row.get("resolved_context"),
            ))
        return items

    async def list_glossary(self, project_id: str) -> List[GlossaryTerm]:
        return [
            GlossaryTerm(
                term=row.get("term", ""),
                reading=row.get("reading"),
                definition=row.get("definition") or "",
                category=row.get("category"),
            )
            for row in self._select("glossary_terms", "project_id", project_id, order="term")
        ]

    async def list_style_references(self, project_id: str) -> List[StyleReference]:
        return [
            StyleReference(
                title=row.get("title", ""),
                style_notes=row.get("style_notes"),
                sample_text=row.get("sample_text"),
                is_active=bool(row.get("is_active", True)),
            )
            for row in self._select("style_references", "project_id", project_id)
        ]

    async def get_agent_config(self, project_id: str, role: AgentRole) -> Optional[AgentConfigOverride]:
        if not self.is_connected:
            return None
        try:
            result = (
                self.client.table("agent_configs")
                .select("*")
                .eq("project_id", project_id)
                .eq("agent_type", AgentRole(role).value)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.warning(f"Failed to read agent config for {role}: {e}")
            return None
        if not result.data:
            return None
        row = result.data[0]
        return AgentConfigOverride(
            role=AgentRole(role),
            system_prompt=row.get("system_prompt"),
            provider=row.get("provider"),
            model=row.get("model"),
            temperature=row.get("temperature"),
            max_tokens=row.get("max_tokens"),
            custom_instructions=row.get("custom_instructions"),
            style_profile=row.get("style_profile"),
        )

    async def list_step_records(
        self, project_id: str, chapter_id: Optional[str] = None
    ) -> List[StepRecord]:
        if not self.is_connected:
            return []
        try:
            query = self.client.table("agent_step_records").select("*").eq("project_id", project_id)
            if chapter_id:
                query = query.eq("chapter_id", chapter_id)
            result = query.order("updated_at").execute()
        except Exception as e:
            logger.warning(f"Failed to read step records for project {project_id}: {e}")
            return []
        return [StepRecord.model_validate(row) for row in result.data or []]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def update_foreshadowing(
        self,
        item_id: str,
        status: ForeshadowingStatus,
        resolved_chapter_id: Optional[str] = None,
        resolved_context: Optional[str] = None,
    ) -> None:
        client = self._require_client()
        data: Dict[str, Any] = {
            "status": ForeshadowingStatus(status).value,
            "updated_at": datetime.utcnow().isoformat(),
        }
        if resolved_chapter_id is not None:
            data["resolved_chapter_id"] = resolved_chapter_id
        if resolved_context is not None:
            data["resolved_context"] = resolved_context
        client.table("foreshadowing").update(data).eq("id", item_id).execute()

    async def insert_character(self, project_id: str, character: CharacterEntry) -> str:
        client = self._require_client()
        data = {
            "project_id": project_id,
            "name": character.name,
            "role": character.role,
            "description": character.description,
            "speech_pattern": character.speech_pattern,
        }
        result = client.table("characters").insert(data).execute()
        return result.data[0]["id"] if result.data else ""

    async def insert_world_setting(self, project_id: str, entry: WorldSettingEntry) -> str:
        client = self._require_client()
        data = {
            "project_id": project_id,
            "category": entry.category,
            "title": entry.title,
            "content": entry.content,
            "sort_order": entry.sort_order,
        }
        result = client.table("world_settings").insert(data).execute()
        return result.data[0]["id"] if result.data else ""

    async def update_chapter_content(self, chapter_id: str, content: str) -> None:
        client = self._require_client()
        client.table("chapters").update({
            "content": content,
            "updated_at": datetime.utcnow().isoformat(),
        }).eq("id", chapter_id).execute()

    async def update_chapter_summary(self, chapter_id: str, brief: str, detailed: str) -> None:
        client = self._require_client()
        client.table("chapters").update({
            "summary_brief": brief,
            "summary_detailed": detailed,
            "updated_at": datetime.utcnow().isoformat(),
        }).eq("id", chapter_id).execute()

    async def record_step(self, record: StepRecord) -> None:
        client = self._require_client()
        client.table("agent_step_records").upsert(
            record.model_dump(mode="json"),
            on_conflict="run_id,step_index",
        ).execute()
