"""
Inkwell Agents Module
Generation agent and role configuration.
"""

from .base import GenerationAgent, build_system_prompt, is_retryable_error
from .roles import ROLE_DEFAULTS, RoleDefaults, build_agent_context, get_role_defaults

__all__ = [
    "GenerationAgent",
    "build_system_prompt",
    "is_retryable_error",
    "ROLE_DEFAULTS",
    "RoleDefaults",
    "build_agent_context",
    "get_role_defaults",
]
