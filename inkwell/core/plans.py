"""
Default step plans.
"""

from typing import List, Optional

from ..models import AgentRole, ChatMessage, Step


def _step(
    role: AgentRole,
    task_type: str,
    description: str,
    prompt: str,
    depends_on: Optional[List[int]] = None,
) -> Step:
    return Step(
        role=role,
        task_type=task_type,
        description=description,
        messages=[ChatMessage(role="user", content=prompt)],
        depends_on=depends_on or [],
    )


def build_writing_pipeline(chapter_number: int, instructions: Optional[str] = None) -> List[Step]:
    """Plan, outline, setting, characters, draft, edit, continuity check for one chapter."""
    target = f"chapter {chapter_number}"
    extra = f"\n\nAuthor's notes:\n{instructions.strip()}" if instructions and instructions.strip() else ""

    return [
        _step(
            AgentRole.COORDINATOR, "plan",
            f"Plan {target}",
            f"Create the working plan for {target}.{extra}",
        ),
        _step(
            AgentRole.PLOT_ARCHITECT, "outline",
            f"Outline {target}",
            f"Write the scene-by-scene outline for {target} based on the plan.",
            [0],
        ),
        _step(
            AgentRole.WORLD_BUILDER, "setting",
            f"Setting notes for {target}",
            f"Provide the setting details needed for {target}'s outline.",
            [0, 1],
        ),
        _step(
            AgentRole.CHARACTER_MANAGER, "briefing",
            f"Character briefing for {target}",
            f"Brief the writer on every character who appears in {target}.",
            [0, 1, 2],
        ),
        _step(
            AgentRole.WRITER, "write",
            f"Draft {target}",
            f"Write the full text of {target}.{extra}",
            [1, 2, 3],
        ),
        _step(
            AgentRole.EDITOR, "review",
            f"Edit {target}",
            f"Revise the draft of {target}.",
            [4],
        ),
        _step(
            AgentRole.CONTINUITY_CHECKER, "check",
            f"Continuity check for {target}",
            f"Check {target} for continuity problems and foreshadowing changes.",
            [4, 5],
        ),
    ]


def build_edit_pipeline(chapter_number: int, instructions: Optional[str] = None) -> List[Step]:
    """Revise an existing chapter and re-check continuity."""
    target = f"chapter {chapter_number}"
    extra = f"\n\nAuthor's notes:\n{instructions.strip()}" if instructions and instructions.strip() else ""

    return [
        _step(
            AgentRole.EDITOR, "review",
            f"Edit {target}",
            f"Revise the current text of {target}.{extra}",
        ),
        _step(
            AgentRole.CONTINUITY_CHECKER, "check",
            f"Continuity check for {target}",
            f"Check the revised {target} for continuity problems and foreshadowing changes.",
            [0],
        ),
    ]
