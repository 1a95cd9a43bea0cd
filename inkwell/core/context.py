"""
Context Aggregator for Inkwell

Renders a project's narrative state into one prompt-ready Markdown document.
The snapshot is read once per run; rendering is a pure function of the
snapshot and the section flags, so identical inputs give identical text.

Section order:
    synopsis -> plot points -> this chapter -> characters -> world settings
    -> unresolved foreshadowing -> chapter synopses -> chapter summaries
    -> glossary -> style references
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from ..models import (
    ChapterContext,
    ChapterRecord,
    ContextOptions,
    ProjectContext,
)
from ..services.narrative_store import NarrativeStore

logger = logging.getLogger("inkwell.context")

SECTION_SEPARATOR = "\n\n---\n\n"
DEFAULT_SUMMARY_WINDOW = 5
DEFAULT_STYLE_SAMPLE_CHARS = 500

CHARACTER_ROLE_ORDER = ["protagonist", "antagonist", "supporting", "minor"]


async def build_project_context(store: NarrativeStore, project_id: str) -> ProjectContext:
    """Fetch every narrative entity of a project concurrently."""
    (
        synopsis,
        characters,
        world_settings,
        plot_points,
        chapters,
        foreshadowing,
        glossary,
        style_references,
    ) = await asyncio.gather(
        store.get_plot_synopsis(project_id),
        store.list_characters(project_id),
        store.list_world_settings(project_id),
        store.list_plot_points(project_id),
        store.list_chapters(project_id),
        store.list_foreshadowing(project_id),
        store.list_glossary(project_id),
        store.list_style_references(project_id),
    )

    return ProjectContext(
        project_id=project_id,
        plot_synopsis=synopsis,
        characters=characters,
        world_settings=world_settings,
        plot_points=plot_points,
        active_foreshadowing=[item for item in foreshadowing if item.status.is_open],
        glossary=glossary,
        style_references=[ref for ref in style_references if ref.is_active],
        chapters=chapters,
    )


def build_chapter_context(
    project: ProjectContext,
    chapter_id: str,
    window: int = DEFAULT_SUMMARY_WINDOW,
) -> Optional[ChapterContext]:
    """
    Derive the chapter overlay from a project snapshot.

    Returns None when the chapter is not part of the snapshot.
    """
    chapters = sorted(project.chapters, key=lambda c: c.chapter_number)
    current = next((c for c in chapters if c.id == chapter_id), None)
    if current is None:
        logger.warning(f"[build_chapter_context] Chapter {chapter_id} not found in project {project.project_id}")
        return None

    preceding = [c for c in chapters if c.chapter_number < current.chapter_number]
    previous = preceding[-1] if preceding else None

    earlier: List[ChapterRecord] = []
    if previous is not None and window > 0:
        summarized = [c for c in preceding[:-1] if c.summary_brief or c.summary_detailed]
        earlier = summarized[-window:]

    return ChapterContext(
        chapter_id=current.id,
        chapter_number=current.chapter_number,
        title=current.title,
        synopsis=current.synopsis,
        plot_points=sorted(
            (p for p in project.plot_points if p.chapter_id == chapter_id),
            key=lambda p: (p.sort_order, p.title),
        ),
        previous_chapter_number=previous.chapter_number if previous else None,
        previous_chapter_summary=(
            (previous.summary_detailed or previous.summary_brief) if previous else None
        ),
        earlier_summaries=earlier,
    )


def _chapter_label(number: int, title: Optional[str]) -> str:
    return f'Chapter {number} "{title}"' if title else f"Chapter {number}"


def _bullets(items, render: Callable) -> str:
    return "\n".join(render(item) for item in items)


def _render_synopsis(project: ProjectContext) -> Optional[str]:
    if project.plot_synopsis and project.plot_synopsis.strip():
        return f"## Synopsis\n{project.plot_synopsis.strip()}"
    return None


def _render_plot_point(point) -> str:
    act = f" ({point.act})" if point.act else ""
    description = f": {point.description}" if point.description else ""
    return f"- **{point.title}**{act}{description}"


def _render_plot_points(project: ProjectContext) -> Optional[str]:
    if not project.plot_points:
        return None
    points = sorted(project.plot_points, key=lambda p: (p.sort_order, p.title))
    return "## Plot Points\n" + _bullets(points, _render_plot_point)


def _render_chapter(chapter: ChapterContext) -> Optional[str]:
    parts = [f"## This Chapter: {_chapter_label(chapter.chapter_number, chapter.title)}"]
    if chapter.synopsis:
        parts.append(f"### Chapter Synopsis\n{chapter.synopsis.strip()}")
    if chapter.plot_points:
        parts.append("### Plot Points for This Chapter\n" + _bullets(chapter.plot_points, _render_plot_point))
    if chapter.previous_chapter_summary:
        parts.append(
            f"### Previous Chapter (Chapter {chapter.previous_chapter_number})\n"
            f"{chapter.previous_chapter_summary.strip()}"
        )
    if chapter.earlier_summaries:
        parts.append("### Earlier Chapters\n" + _bullets(
            chapter.earlier_summaries,
            lambda c: f"- {_chapter_label(c.chapter_number, c.title)}: {c.summary_brief or c.summary_detailed}",
        ))
    return "\n\n".join(parts)


def _character_sort_key(character) -> Tuple[int, str]:
    role = (character.role or "").lower()
    rank = CHARACTER_ROLE_ORDER.index(role) if role in CHARACTER_ROLE_ORDER else len(CHARACTER_ROLE_ORDER)
    return rank, character.name


def _render_characters(project: ProjectContext) -> Optional[str]:
    if not project.characters:
        return None

    def render(c) -> str:
        line = f"- **{c.name}** ({c.role}): {c.description or 'No description'}"
        if c.speech_pattern:
            line += f" / Speech: {c.speech_pattern}"
        return line

    return "## Characters\n" + _bullets(sorted(project.characters, key=_character_sort_key), render)


def _render_world_settings(project: ProjectContext) -> Optional[str]:
    if not project.world_settings:
        return None
    entries = sorted(project.world_settings, key=lambda w: (w.sort_order, w.category, w.title))
    body = "\n\n".join(f"### {w.category}: {w.title}\n{w.content}" for w in entries)
    return f"## World Settings\n{body}"


def _render_foreshadowing(project: ProjectContext) -> Optional[str]:
    items = [item for item in project.active_foreshadowing if item.status.is_open]
    if not items:
        return None

    def render(f) -> str:
        target = f" / due: chapter {f.target_chapter}" if f.target_chapter else ""
        return f"- **{f.title}**: {f.description} (status: {f.status.value}{target})"

    items.sort(key=lambda f: (f.target_chapter is None, f.target_chapter or 0, f.title))
    return "## Unresolved Foreshadowing\n" + _bullets(items, render)


def _render_chapter_synopses(project: ProjectContext) -> Optional[str]:
    chapters = [c for c in sorted(project.chapters, key=lambda c: c.chapter_number) if c.synopsis]
    if not chapters:
        return None
    return "## Chapter Synopses\n" + _bullets(
        chapters, lambda c: f"- {_chapter_label(c.chapter_number, c.title)}: {c.synopsis}"
    )


def _render_chapter_summaries(project: ProjectContext) -> Optional[str]:
    chapters = [c for c in sorted(project.chapters, key=lambda c: c.chapter_number) if c.summary_brief]
    if not chapters:
        return None
    return "## Chapter Summaries\n" + _bullets(
        chapters, lambda c: f"- {_chapter_label(c.chapter_number, c.title)}: {c.summary_brief}"
    )


def _render_glossary(project: ProjectContext) -> Optional[str]:
    if not project.glossary:
        return None

    def render(g) -> str:
        reading = f" ({g.reading})" if g.reading else ""
        return f"- **{g.term}**{reading}: {g.definition}"

    return "## Glossary\n" + _bullets(sorted(project.glossary, key=lambda g: g.term), render)


def _render_style_references(project: ProjectContext, sample_chars: int) -> Optional[str]:
    refs = [ref for ref in project.style_references if ref.is_active]
    if not refs:
        return None

    def render(s) -> str:
        text = f"### {s.title}\n{s.style_notes or ''}".rstrip()
        if s.sample_text and sample_chars > 0:
            text += f"\n\nSample:\n> {s.sample_text[:sample_chars]}"
        return text

    body = "\n\n".join(render(s) for s in sorted(refs, key=lambda s: s.title))
    return f"## Style References\n{body}"


def format_context_for_prompt(
    project: ProjectContext,
    chapter: Optional[ChapterContext] = None,
    options: Optional[ContextOptions] = None,
    style_sample_chars: int = DEFAULT_STYLE_SAMPLE_CHARS,
) -> str:
    """Render the snapshot. Empty sections are left out entirely."""
    options = options or ContextOptions()

    sections = [
        _render_synopsis(project),
        _render_plot_points(project) if options.include_plot_points else None,
        _render_chapter(chapter) if chapter is not None else None,
        _render_characters(project),
        _render_world_settings(project),
        _render_foreshadowing(project),
        _render_chapter_synopses(project) if options.include_chapter_synopses else None,
        _render_chapter_summaries(project) if options.include_chapter_summaries else None,
        _render_glossary(project),
        _render_style_references(project, style_sample_chars) if options.include_style_references else None,
    ]
    return SECTION_SEPARATOR.join(section for section in sections if section)


class ContextAggregator:
    """Loads a snapshot from the store and renders it with fixed options."""

    def __init__(
        self,
        store: NarrativeStore,
        options: Optional[ContextOptions] = None,
        summary_window: int = DEFAULT_SUMMARY_WINDOW,
        style_sample_chars: int = DEFAULT_STYLE_SAMPLE_CHARS,
    ):
        self.store = store
        self.options = options or ContextOptions()
        self.summary_window = summary_window
        self.style_sample_chars = style_sample_chars

    async def load(
        self, project_id: str, chapter_id: Optional[str] = None
    ) -> Tuple[ProjectContext, Optional[ChapterContext]]:
        project = await build_project_context(self.store, project_id)
        chapter = None
        if chapter_id:
            chapter = build_chapter_context(project, chapter_id, window=self.summary_window)
        return project, chapter

    async def render(self, project_id: str, chapter_id: Optional[str] = None) -> str:
        project, chapter = await self.load(project_id, chapter_id)
        text = format_context_for_prompt(
            project, chapter, self.options, style_sample_chars=self.style_sample_chars
        )
        logger.info(
            f"[ContextAggregator] Rendered context for project {project_id} "
            f"(chapter={chapter_id}, chars={len(text)})"
        )
        return text
