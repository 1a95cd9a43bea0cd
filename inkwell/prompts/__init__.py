"""
Inkwell Prompts Module
Default system prompts for each pipeline role.
"""

from .character_manager import CHARACTER_MANAGER_SYSTEM_PROMPT
from .continuity_checker import CONTINUITY_CHECKER_SYSTEM_PROMPT
from .coordinator import COORDINATOR_SYSTEM_PROMPT
from .editor import EDITOR_SYSTEM_PROMPT
from .fixer import FIXER_SYSTEM_PROMPT
from .plot_architect import PLOT_ARCHITECT_SYSTEM_PROMPT
from .world_builder import WORLD_BUILDER_SYSTEM_PROMPT
from .writer import WRITER_SYSTEM_PROMPT

CHAPTER_SUMMARY_PROMPT = """Summarize the following novel chapter. Respond with JSON only:

{"brief": "one or two sentences, at most 200 characters", "detailed": "a detailed summary of at most 800 characters covering events, character changes and open threads"}"""

__all__ = [
    "COORDINATOR_SYSTEM_PROMPT",
    "PLOT_ARCHITECT_SYSTEM_PROMPT",
    "WORLD_BUILDER_SYSTEM_PROMPT",
    "CHARACTER_MANAGER_SYSTEM_PROMPT",
    "WRITER_SYSTEM_PROMPT",
    "EDITOR_SYSTEM_PROMPT",
    "CONTINUITY_CHECKER_SYSTEM_PROMPT",
    "FIXER_SYSTEM_PROMPT",
    "CHAPTER_SUMMARY_PROMPT",
]
