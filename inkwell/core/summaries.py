"""
Chapter summaries used by later chapters' context.
"""

import logging
from typing import Optional

from ..config import DEFAULT_MODEL, LLMProvider, PipelineSettings
from ..models import ChapterSummary
from ..prompts import CHAPTER_SUMMARY_PROMPT
from ..services.model_client import UnifiedModelClient
from ..services.narrative_store import NarrativeStore
from .parsing import parse_chapter_summary

logger = logging.getLogger("inkwell.summaries")


class ChapterSummarizer:
    """Generates and stores brief/detailed summaries for a chapter."""

    def __init__(
        self,
        store: NarrativeStore,
        model_client: UnifiedModelClient,
        provider: LLMProvider = LLMProvider.CLAUDE,
        model: str = DEFAULT_MODEL,
        settings: Optional[PipelineSettings] = None,
    ):
        self.store = store
        self.model_client = model_client
        self.provider = provider
        self.model = model
        self.settings = settings or PipelineSettings()

    async def generate(self, chapter_id: str) -> ChapterSummary:
        """
        Raises:
            ValueError: the chapter does not exist or has no content yet
        """
        chapter = await self.store.get_chapter(chapter_id)
        if chapter is None:
            raise ValueError(f"Chapter not found: {chapter_id}")
        if not chapter.content:
            raise ValueError(f"Chapter has no content: {chapter_id}")

        label = f'Chapter {chapter.chapter_number}' + (f' "{chapter.title}"' if chapter.title else "")
        response = await self.model_client.create_chat_completion(
            messages=[
                {"role": "system", "content": CHAPTER_SUMMARY_PROMPT},
                {"role": "user", "content": f"Summarize {label}.\n\n---\n\n{chapter.content}"},
            ],
            model=self.model,
            provider=self.provider,
            temperature=self.settings.summary_temperature,
            max_tokens=self.settings.summary_max_tokens,
        )

        summary = parse_chapter_summary(
            response.content,
            brief_max_chars=self.settings.summary_brief_max_chars,
            detailed_max_chars=self.settings.summary_detailed_max_chars,
        )
        await self.store.update_chapter_summary(chapter_id, summary.brief, summary.detailed)
        logger.info(f"[ChapterSummarizer] Stored summary for chapter {chapter_id} ({len(summary.brief)} chars brief)")
        return summary
