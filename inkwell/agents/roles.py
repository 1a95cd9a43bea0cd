"""
Role defaults and per-project agent configuration.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from ..config import LLMConfiguration
from ..models import AgentContext, AgentRole
from ..prompts import (
    CHARACTER_MANAGER_SYSTEM_PROMPT,
    CONTINUITY_CHECKER_SYSTEM_PROMPT,
    COORDINATOR_SYSTEM_PROMPT,
    EDITOR_SYSTEM_PROMPT,
    FIXER_SYSTEM_PROMPT,
    PLOT_ARCHITECT_SYSTEM_PROMPT,
    WORLD_BUILDER_SYSTEM_PROMPT,
    WRITER_SYSTEM_PROMPT,
)
from ..services.narrative_store import NarrativeStore

logger = logging.getLogger("inkwell.agents")


@dataclass(frozen=True)
class RoleDefaults:
    system_prompt: str
    temperature: float
    max_tokens: int


ROLE_DEFAULTS: Dict[AgentRole, RoleDefaults] = {
    AgentRole.COORDINATOR: RoleDefaults(COORDINATOR_SYSTEM_PROMPT, 0.3, 2048),
    AgentRole.PLOT_ARCHITECT: RoleDefaults(PLOT_ARCHITECT_SYSTEM_PROMPT, 0.7, 4096),
    AgentRole.WORLD_BUILDER: RoleDefaults(WORLD_BUILDER_SYSTEM_PROMPT, 0.7, 4096),
    AgentRole.CHARACTER_MANAGER: RoleDefaults(CHARACTER_MANAGER_SYSTEM_PROMPT, 0.6, 4096),
    AgentRole.WRITER: RoleDefaults(WRITER_SYSTEM_PROMPT, 0.8, 8192),
    AgentRole.EDITOR: RoleDefaults(EDITOR_SYSTEM_PROMPT, 0.5, 8192),
    AgentRole.CONTINUITY_CHECKER: RoleDefaults(CONTINUITY_CHECKER_SYSTEM_PROMPT, 0.2, 4096),
    AgentRole.FIXER: RoleDefaults(FIXER_SYSTEM_PROMPT, 0.4, 8192),
}


def get_role_defaults(role: AgentRole) -> RoleDefaults:
    return ROLE_DEFAULTS[AgentRole(role)]


async def build_agent_context(
    store: NarrativeStore,
    project_id: str,
    role: AgentRole,
    llm_config: LLMConfiguration,
    chapter_id: Optional[str] = None,
) -> AgentContext:
    """
    Resolve a role's configuration for a project.

    Values stored as a per-project override win; anything left unset falls
    back to the role defaults and the provider/model assigned in llm_config.
    """
    role = AgentRole(role)
    defaults = get_role_defaults(role)
    provider, model = llm_config.agent_models.for_role(role.value)
    override = await store.get_agent_config(project_id, role)

    if override is None:
        return AgentContext(
            project_id=project_id,
            chapter_id=chapter_id,
            role=role,
            system_prompt=defaults.system_prompt,
            provider=provider.value,
            model=model,
            temperature=defaults.temperature,
            max_tokens=defaults.max_tokens,
        )

    logger.debug(f"[build_agent_context] Using stored override for {role.value} in project {project_id}")
    return AgentContext(
        project_id=project_id,
        chapter_id=chapter_id,
        role=role,
        system_prompt=override.system_prompt or defaults.system_prompt,
        provider=override.provider or provider.value,
        model=override.model or model,
        temperature=override.temperature if override.temperature is not None else defaults.temperature,
        max_tokens=override.max_tokens or defaults.max_tokens,
        custom_instructions=override.custom_instructions,
        style_profile=override.style_profile,
    )
