"""
Pytest configuration and fixtures for Inkwell tests.

This module provides:
- Network blocking fixture to prevent accidental API calls in CI
- A seeded in-memory narrative store
- A scripted stand-in for the generation agent
"""

import asyncio
import socket
from typing import Callable, Dict, List, Optional, Union
from unittest.mock import patch

import pytest

from inkwell.config import LLMConfiguration, PipelineSettings
from inkwell.core.errors import AgentExecutionError
from inkwell.models import (
    AgentResult,
    ChapterRecord,
    CharacterEntry,
    ChatMessage,
    ForeshadowingItem,
    ForeshadowingStatus,
    GlossaryTerm,
    PlotPoint,
    Step,
    StyleReference,
    TokenUsage,
    WorldSettingEntry,
)
from inkwell.services import InMemoryNarrativeStore

PROJECT_ID = "project-1"


class NetworkBlockedError(Exception):
    """Raised when a test attempts to make a network connection."""
    pass


def _block_socket_connect(*args, **kwargs):
    """Block all socket connections to prevent accidental API calls."""
    raise NetworkBlockedError(
        "Network access is blocked in unit tests. "
        "If you need to test network functionality, use mocks. "
        "This prevents accidental OpenAI/Anthropic API calls that cost money."
    )


@pytest.fixture(autouse=True)
def block_network():
    """
    Automatically block all network connections in tests.

    If a test needs to make real network calls (integration tests),
    it should be marked with @pytest.mark.integration and run separately.
    """
    with patch.object(socket.socket, 'connect', _block_socket_connect):
        with patch.object(socket, 'create_connection', _block_socket_connect):
            yield


Reply = Union[str, Exception, Callable[[], str]]


class ScriptedAgent:
    """
    Replays canned replies in call order and remembers what it was sent.

    A reply may be a string (streamed in two chunks), an exception (raised
    before any chunk) or a callable producing the text.
    """

    def __init__(self, replies: Optional[List[Reply]] = None, default: str = "ok"):
        self.replies = list(replies or [])
        self.default = default
        self.calls: List[Dict] = []
        self.before_reply: Optional[Callable[[int], None]] = None

    async def execute(self, context, messages, on_chunk=None) -> AgentResult:
        call_index = len(self.calls)
        self.calls.append({"role": context.role, "context": context, "messages": list(messages)})
        if self.before_reply is not None:
            self.before_reply(call_index)

        reply = self.replies[call_index] if call_index < len(self.replies) else self.default
        if isinstance(reply, Exception):
            raise reply
        text = reply() if callable(reply) else reply

        half = len(text) // 2
        for chunk in (text[:half], text[half:]):
            if chunk and on_chunk is not None:
                await on_chunk(chunk)
            await asyncio.sleep(0)

        return AgentResult(
            role=context.role,
            text=text,
            token_usage=TokenUsage(input_tokens=10, output_tokens=len(text)),
            stop_reason="end_turn",
        )

    def context_message(self, call_index: int) -> str:
        return self.calls[call_index]["messages"][0].content


def make_steps(roles, depends=None) -> List[Step]:
    depends = depends or {}
    return [
        Step(
            role=role,
            task_type=f"task-{i}",
            description=f"Step {i}",
            messages=[ChatMessage(role="user", content=f"Do step {i}")],
            depends_on=depends.get(i, []),
        )
        for i, role in enumerate(roles)
    ]


def failing_error(message: str = "upstream timed out") -> AgentExecutionError:
    return AgentExecutionError(message, role="writer", provider="claude", retryable=True)


@pytest.fixture
def store():
    """In-memory store seeded with a small three-chapter project."""
    s = InMemoryNarrativeStore()
    s.synopses[PROJECT_ID] = "A lighthouse keeper finds a map in a bottle."
    s.characters[PROJECT_ID] = [
        CharacterEntry(id="c2", name="Ora", role="supporting", description="Harbour pilot"),
        CharacterEntry(id="c1", name="Elin", role="protagonist", description="Lighthouse keeper"),
    ]
    s.world_settings[PROJECT_ID] = [
        WorldSettingEntry(id="w1", category="place", title="Skarv Light", content="A granite tower."),
    ]
    s.plot_points[PROJECT_ID] = [
        PlotPoint(id="p1", title="The bottle", description="Elin finds the map", act="1", sort_order=1, chapter_id="ch-1"),
        PlotPoint(id="p2", title="The crossing", description="Elin sails out", act="1", sort_order=2, chapter_id="ch-3"),
    ]
    s.glossary[PROJECT_ID] = [GlossaryTerm(term="skerry", definition="A small rocky island")]
    s.style_references[PROJECT_ID] = [
        StyleReference(title="Spare prose", style_notes="Short sentences", sample_text="The sea was grey."),
    ]
    s.add_chapter(PROJECT_ID, ChapterRecord(
        id="ch-1", chapter_number=1, title="The Bottle", synopsis="Elin finds the bottle.",
        summary_brief="Elin finds a bottle.", summary_detailed="Elin finds a bottle with a map inside.",
        content="Chapter one text.",
    ))
    s.add_chapter(PROJECT_ID, ChapterRecord(
        id="ch-2", chapter_number=2, title="The Map", synopsis="Elin reads the map.",
        summary_brief="Elin reads the map.", summary_detailed="Elin spends the night reading the map.",
        content="Chapter two text.",
    ))
    s.add_chapter(PROJECT_ID, ChapterRecord(
        id="ch-3", chapter_number=3, title="The Crossing", synopsis="Elin sails to the skerry.",
    ))
    s.add_foreshadowing(PROJECT_ID, ForeshadowingItem(
        id="f1", title="The torn corner", status=ForeshadowingStatus.PLANTED,
    ))
    s.add_foreshadowing(PROJECT_ID, ForeshadowingItem(
        id="f2", title="The drowned bell", status=ForeshadowingStatus.HINTED,
    ))
    s.add_foreshadowing(PROJECT_ID, ForeshadowingItem(
        id="f3", title="The old debt", status=ForeshadowingStatus.RESOLVED, resolved_chapter_id="ch-1",
    ))
    return s


@pytest.fixture
def llm_config():
    return LLMConfiguration()


@pytest.fixture
def settings():
    return PipelineSettings()
