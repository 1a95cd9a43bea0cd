"""
Exception types raised by the pipeline and its collaborators.
"""

from typing import Optional


class InkwellError(Exception):
    """Base class for all Inkwell errors."""


class ProviderNotConfiguredError(InkwellError, ValueError):
    """Raised when a role is routed to a provider without credentials."""


class AgentExecutionError(InkwellError):
    """
    A generation call failed (timeout, rate limit, malformed response, ...).

    Distinct from an agent returning an empty or unhelpful answer, which is
    a successful call.
    """

    def __init__(
        self,
        message: str,
        role: Optional[str] = None,
        provider: Optional[str] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.role = role
        self.provider = provider
        self.retryable = retryable


class PipelineConfigurationError(InkwellError):
    """The caller supplied a step list that cannot be executed."""


class DependencyViolationError(PipelineConfigurationError):
    """A step was asked to run before all of its dependencies completed."""

    def __init__(self, step_index: int, missing):
        self.step_index = step_index
        self.missing = list(missing)
        super().__init__(
            f"Step {step_index} cannot run: dependencies {self.missing} have not completed"
        )
