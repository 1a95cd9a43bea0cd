"""
Result Parsers for Inkwell

Best-effort extraction of structured facts from agent output. No parser in
this module raises on malformed input; each returns a ParseOutcome tagged
with the tier that produced it:

    STRUCTURED_BLOCK  a JSON object located around a known marker key
    WHOLE_DOCUMENT    the entire text decoded as one JSON document
    TEXT_FALLBACK     plain-text heuristics (always succeeds)
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from pydantic import ValidationError

from ..models import (
    ChapterSummary,
    ConsistencyIssue,
    ConsistencyResult,
    ForeshadowingUpdate,
    NewCharacter,
    NewWorldSetting,
)

logger = logging.getLogger("inkwell.parsing")

T = TypeVar("T")

CONSISTENCY_MARKER = "continuityIssues"
FORESHADOWING_MARKER = "foreshadowingUpdates"
NEW_CHARACTERS_MARKER = "newCharacters"
DEFAULT_ESCALATION_MARKER = "requires_consultation"
FALLBACK_NOTE_MAX_CHARS = 1000

EDITOR_START_MARKER = re.compile(r"---\s*revised\s+text\s*---", re.IGNORECASE)
EDITOR_END_MARKER = re.compile(r"---\s*feedback\s*---", re.IGNORECASE)
SPLIT_SUGGESTION = re.compile(r"<!--\s*SPLIT_SUGGESTION:[\s\S]*?-->")
CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

ERROR_KEYWORDS = ("error", "critical")
WARNING_KEYWORDS = ("warning", "caution")


class ParseTier(str, Enum):
    STRUCTURED_BLOCK = "structured_block"
    WHOLE_DOCUMENT = "whole_document"
    TEXT_FALLBACK = "text_fallback"


@dataclass
class ParseOutcome(Generic[T]):
    """Parser result. Always carries a value; tier says how it was obtained."""
    value: T
    tier: ParseTier
    notes: List[str] = field(default_factory=list)

    @property
    def structured(self) -> bool:
        return self.tier != ParseTier.TEXT_FALLBACK


@dataclass
class NewEntities:
    characters: List[NewCharacter] = field(default_factory=list)
    world_settings: List[NewWorldSetting] = field(default_factory=list)


# ============================================================================
# JSON location
# ============================================================================

def _decode_structured_block(text: str, marker: str) -> Optional[Dict[str, Any]]:
    """Find the outermost JSON object that has `marker` as a top-level key."""
    quoted = f'"{marker}"'
    marker_pos = text.find(quoted)
    if marker_pos < 0:
        return None

    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", text[:marker_pos]):
        try:
            obj, _end = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict) and marker in obj:
            return obj
    return None


def _decode_whole_document(text: str, marker: str) -> Optional[Dict[str, Any]]:
    candidate = text.strip()
    fenced = CODE_FENCE.fullmatch(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    if not candidate:
        return None
    try:
        obj = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


def extract_json(text: str) -> Optional[Any]:
    """
    Pull the first JSON value out of free text.

    Tries the whole text, then a fenced code block, then the first '{' or '['.
    """
    if not text or not text.strip():
        return None
    stripped = text.strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    fenced = CODE_FENCE.search(stripped)
    if fenced:
        try:
            return json.loads(fenced.group(1).strip())
        except json.JSONDecodeError:
            pass

    decoder = json.JSONDecoder()
    for index, char in enumerate(stripped):
        if char in "{[":
            try:
                value, _end = decoder.raw_decode(stripped, index)
                return value
            except json.JSONDecodeError:
                continue
    return None


def _parse_tiered(
    text: str,
    marker: str,
    build: Callable[[Dict[str, Any]], T],
    fallback: Callable[[str], T],
) -> ParseOutcome[T]:
    text = text or ""
    notes: List[str] = []
    decoders = (
        (ParseTier.STRUCTURED_BLOCK, _decode_structured_block),
        (ParseTier.WHOLE_DOCUMENT, _decode_whole_document),
    )
    for tier, decode in decoders:
        payload = decode(text, marker)
        if payload is None:
            continue
        try:
            return ParseOutcome(value=build(payload), tier=tier, notes=notes)
        except (ValidationError, TypeError, ValueError, AttributeError) as e:
            notes.append(f"{tier.value}: {e}")
            logger.warning(f"[_parse_tiered] Discarding {tier.value} payload for '{marker}': {e}")

    return ParseOutcome(value=fallback(text), tier=ParseTier.TEXT_FALLBACK, notes=notes)


# ============================================================================
# Payload normalization
# ============================================================================

def _pick(entry: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = entry.get(key)
        if value is not None and value != "":
            return str(value)
    return None


def _dicts(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _normalize_severity(value: Any) -> str:
    severity = str(value or "").strip().lower()
    return severity if severity in ("error", "warning", "info") else "info"


def _build_issues(payload: Dict[str, Any]) -> List[ConsistencyIssue]:
    return [
        ConsistencyIssue(
            severity=_normalize_severity(entry.get("severity")),
            category=_pick(entry, "category") or "general",
            description=_pick(entry, "description") or "",
            location=_pick(entry, "location"),
            suggestion=_pick(entry, "suggestion"),
        )
        for entry in _dicts(payload.get(CONSISTENCY_MARKER))
    ]


def _build_foreshadowing_updates(payload: Dict[str, Any]) -> List[ForeshadowingUpdate]:
    updates = []
    for entry in _dicts(payload.get(FORESHADOWING_MARKER)):
        title = _pick(entry, "title")
        if not title:
            continue
        updates.append(ForeshadowingUpdate(
            action=_pick(entry, "action") or "",
            title=title,
            details=_pick(entry, "details") or "",
            suggested_status=_pick(entry, "suggestedStatus", "suggested_status"),
            resolved_context=_pick(entry, "resolvedContext", "resolved_context"),
        ))
    return updates


def _build_new_characters(payload: Dict[str, Any]) -> List[NewCharacter]:
    characters = []
    for entry in _dicts(payload.get(NEW_CHARACTERS_MARKER)):
        name = (_pick(entry, "name") or "").strip()
        if not name:
            continue
        characters.append(NewCharacter(
            name=name,
            role=_pick(entry, "role"),
            description=_pick(entry, "description"),
            appearance=_pick(entry, "appearance"),
            personality=_pick(entry, "personality"),
            speech_pattern=_pick(entry, "speechPattern", "speech_pattern"),
        ))
    return characters


def _build_new_world_settings(payload: Dict[str, Any]) -> List[NewWorldSetting]:
    return [
        NewWorldSetting(
            category=_pick(entry, "category"),
            title=_pick(entry, "title") or "",
            content=_pick(entry, "content") or "",
        )
        for entry in _dicts(payload.get("newWorldSettings"))
    ]


def _build_consistency_result(payload: Dict[str, Any]) -> ConsistencyResult:
    if not any(key in payload for key in (CONSISTENCY_MARKER, FORESHADOWING_MARKER, "overallConsistency")):
        raise ValueError("document has no consistency fields")

    overall = str(payload.get("overallConsistency") or "medium").strip().lower()
    return ConsistencyResult(
        overall_consistency=overall if overall in ("high", "medium", "low") else "medium",
        issues=_build_issues(payload),
        foreshadowing_updates=_build_foreshadowing_updates(payload),
        new_characters=_build_new_characters(payload),
        new_world_settings=_build_new_world_settings(payload),
    )


def classify_severity(line: str) -> str:
    """Keyword heuristic for plain-text findings. Deliberately approximate."""
    lowered = line.lower()
    if any(keyword in lowered for keyword in ERROR_KEYWORDS):
        return "error"
    if any(keyword in lowered for keyword in WARNING_KEYWORDS):
        return "warning"
    return "info"


def _consistency_from_text(text: str, max_chars: int) -> ConsistencyResult:
    result = ConsistencyResult()
    for line in text.splitlines():
        trimmed = line.strip()
        if trimmed.startswith("- ") or trimmed.startswith("* "):
            description = trimmed[2:].strip()
            if description:
                result.issues.append(ConsistencyIssue(
                    severity=classify_severity(description),
                    category="general",
                    description=description,
                ))

    if not result.issues and text.strip():
        result.issues.append(ConsistencyIssue(
            severity="info",
            category="general",
            description=text.strip()[:max_chars],
        ))
    return result


# ============================================================================
# Public parsers
# ============================================================================

def parse_consistency_result(
    text: str, max_chars: int = FALLBACK_NOTE_MAX_CHARS
) -> ParseOutcome[ConsistencyResult]:
    """Parse a continuity checker's output."""
    return _parse_tiered(
        text,
        CONSISTENCY_MARKER,
        _build_consistency_result,
        lambda raw: _consistency_from_text(raw, max_chars),
    )


def parse_foreshadowing_updates(text: str) -> ParseOutcome[List[ForeshadowingUpdate]]:
    def build(payload: Dict[str, Any]) -> List[ForeshadowingUpdate]:
        if FORESHADOWING_MARKER not in payload:
            raise ValueError(f"document has no {FORESHADOWING_MARKER}")
        return _build_foreshadowing_updates(payload)

    return _parse_tiered(text, FORESHADOWING_MARKER, build, lambda raw: [])


def parse_new_entities(text: str) -> ParseOutcome[NewEntities]:
    def build(payload: Dict[str, Any]) -> NewEntities:
        if NEW_CHARACTERS_MARKER not in payload and "newWorldSettings" not in payload:
            raise ValueError("document has no new entity lists")
        return NewEntities(
            characters=_build_new_characters(payload),
            world_settings=_build_new_world_settings(payload),
        )

    return _parse_tiered(text, NEW_CHARACTERS_MARKER, build, lambda raw: NewEntities())


def _escalation_pattern(marker: str) -> re.Pattern:
    # requires_consultation also matches requiresConsultation / "requires-consultation"
    parts = [re.escape(part) for part in re.split(r"[_\-\s]+", marker.strip()) if part]
    key = r"[_\-]?".join(parts)
    return re.compile(
        rf"""["']?{key}["']?\s*[:=]\s*["']?(true|yes|1)\b""",
        re.IGNORECASE,
    )


def detect_escalation(text: str, marker: str = DEFAULT_ESCALATION_MARKER) -> bool:
    """True when the output sets the consultation flag to a truthy value."""
    if not text or not marker:
        return False
    return _escalation_pattern(marker).search(text) is not None


def strip_split_suggestions(text: str) -> str:
    return SPLIT_SUGGESTION.sub("", text or "").strip()


def extract_editor_content(text: str) -> str:
    """
    Pull the revised chapter out of an editor response.

    Returns "" when the response is the legacy JSON corrections format, which
    carries no usable chapter text.
    """
    raw = text or ""
    start = EDITOR_START_MARKER.search(raw)
    if start:
        end = EDITOR_END_MARKER.search(raw, start.end())
        body = raw[start.end():end.start()] if end else raw[start.end():]
        return strip_split_suggestions(body)

    trimmed = raw.strip()
    if trimmed.startswith("{") and '"corrections"' in trimmed:
        logger.warning("[extract_editor_content] Editor output is legacy JSON format, cannot extract content")
        return ""

    return strip_split_suggestions(raw)


def parse_chapter_summary(
    text: str,
    brief_max_chars: int = 200,
    detailed_max_chars: int = 800,
) -> ChapterSummary:
    """Read {brief, detailed} from a summarizer response, truncating raw text on failure."""
    payload = extract_json(text or "")
    if isinstance(payload, dict):
        brief = payload.get("brief")
        detailed = payload.get("detailed")
        if isinstance(brief, str) and isinstance(detailed, str) and brief.strip():
            return ChapterSummary(brief=brief.strip(), detailed=detailed.strip())

    raw = (text or "").strip()
    return ChapterSummary(brief=raw[:brief_max_chars], detailed=raw[:detailed_max_chars])
