"""
State Appliers for Inkwell

Persist facts parsed from agent output. Each proposal is applied on its own:
a proposal that cannot be applied is reported in `errors` and the batch
continues.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..models import (
    CharacterEntry,
    ForeshadowingStatus,
    ForeshadowingUpdate,
    NewCharacter,
    NewWorldSetting,
    WorldSettingEntry,
)
from ..services.narrative_store import NarrativeStore

logger = logging.getLogger("inkwell.appliers")

STATUS_CHANGE_ACTION = "status_change"
CHARACTER_ROLES = ("protagonist", "antagonist", "supporting", "minor")
DEFAULT_CHARACTER_ROLE = "minor"
DEFAULT_WORLD_CATEGORY = "misc"


@dataclass
class ApplyResult:
    applied: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class EntityExtractionResult:
    characters: ApplyResult = field(default_factory=ApplyResult)
    world_settings: ApplyResult = field(default_factory=ApplyResult)

    @property
    def errors(self) -> List[str]:
        return self.characters.errors + self.world_settings.errors


def is_forward_transition(current: ForeshadowingStatus, proposed: ForeshadowingStatus) -> bool:
    """Statuses only advance: planted < hinted < partially_resolved < resolved < abandoned."""
    return proposed.rank > current.rank


async def update_foreshadowing(
    store: NarrativeStore,
    project_id: str,
    chapter_id: Optional[str],
    updates: Sequence[ForeshadowingUpdate],
) -> ApplyResult:
    """
    Apply status-change proposals to the project's foreshadowing items.

    Items are matched by exact title. Proposals that would keep or regress an
    item's status are skipped silently. Moving to `resolved` also records the
    resolving chapter and, when given, the resolution note.
    """
    result = ApplyResult()
    items = await store.list_foreshadowing(project_id)
    by_title = {item.title: item for item in items}
    # Status as seen by this batch, so repeated proposals stay monotonic
    current_status: Dict[str, ForeshadowingStatus] = {item.id: item.status for item in items}

    for update in updates:
        if update.action != STATUS_CHANGE_ACTION or not update.suggested_status:
            continue

        item = by_title.get(update.title)
        if item is None:
            result.errors.append(f"Foreshadowing not found: {update.title}")
            continue

        try:
            proposed = ForeshadowingStatus(update.suggested_status.strip().lower())
        except ValueError:
            result.errors.append(f"Invalid status '{update.suggested_status}' for foreshadowing: {update.title}")
            continue

        if not is_forward_transition(current_status[item.id], proposed):
            result.skipped += 1
            continue

        resolving = proposed == ForeshadowingStatus.RESOLVED
        try:
            await store.update_foreshadowing(
                item.id,
                proposed,
                resolved_chapter_id=chapter_id if resolving else None,
                resolved_context=update.resolved_context if resolving else None,
            )
        except Exception as e:
            logger.warning(f"[update_foreshadowing] Failed to update '{update.title}': {e}")
            result.errors.append(f"Failed to update foreshadowing '{update.title}': {e}")
            continue

        current_status[item.id] = proposed
        result.applied += 1

    logger.info(
        f"[update_foreshadowing] project={project_id} applied={result.applied} "
        f"skipped={result.skipped} errors={len(result.errors)}"
    )
    return result


def _character_description(character: NewCharacter) -> Optional[str]:
    parts = [character.description, character.appearance, character.personality]
    text = "\n".join(part.strip() for part in parts if part and part.strip())
    return text or None


def _world_key(category: str, title: str) -> Tuple[str, str]:
    return category, title


async def extract_entities(
    store: NarrativeStore,
    project_id: str,
    characters: Sequence[NewCharacter] = (),
    world_settings: Sequence[NewWorldSetting] = (),
) -> EntityExtractionResult:
    """
    Insert newly mentioned characters and world entries.

    Characters are de-duplicated by exact name, world entries by
    (category, title), against both stored entities and entities inserted
    earlier in the same batch.
    """
    result = EntityExtractionResult()

    if characters:
        existing = await store.list_characters(project_id)
        known_names: Set[str] = {c.name for c in existing}
        for proposal in characters:
            name = (proposal.name or "").strip()
            if not name:
                result.characters.skipped += 1
                continue
            if name in known_names:
                result.characters.skipped += 1
                continue

            role = (proposal.role or "").strip().lower()
            entry = CharacterEntry(
                name=name,
                role=role if role in CHARACTER_ROLES else DEFAULT_CHARACTER_ROLE,
                description=_character_description(proposal),
                speech_pattern=proposal.speech_pattern,
            )
            try:
                await store.insert_character(project_id, entry)
            except Exception as e:
                logger.warning(f"[extract_entities] Failed to insert character '{name}': {e}")
                result.characters.errors.append(f"Failed to insert character '{name}': {e}")
                continue
            known_names.add(name)
            result.characters.applied += 1

    if world_settings:
        existing_world = await store.list_world_settings(project_id)
        known_keys = {_world_key(w.category, w.title) for w in existing_world}
        next_sort_order = max((w.sort_order for w in existing_world), default=-1) + 1
        for proposal in world_settings:
            title = (proposal.title or "").strip()
            content = (proposal.content or "").strip()
            if not title or not content:
                result.world_settings.skipped += 1
                continue
            category = (proposal.category or "").strip() or DEFAULT_WORLD_CATEGORY
            key = _world_key(category, title)
            if key in known_keys:
                result.world_settings.skipped += 1
                continue

            entry = WorldSettingEntry(
                category=category, title=title, content=content, sort_order=next_sort_order
            )
            try:
                await store.insert_world_setting(project_id, entry)
            except Exception as e:
                logger.warning(f"[extract_entities] Failed to insert world setting '{category}::{title}': {e}")
                result.world_settings.errors.append(f"Failed to insert world setting '{title}': {e}")
                continue
            known_keys.add(key)
            next_sort_order += 1
            result.world_settings.applied += 1

    logger.info(
        f"[extract_entities] project={project_id} characters={result.characters.applied} "
        f"world_settings={result.world_settings.applied} errors={len(result.errors)}"
    )
    return result
