"""
Error taxonomy for job submission and execution.

Submission errors are raised synchronously to callers. Execution errors
never escape a worker; they are recorded on the Job and surfaced through
lifecycle events.
"""

from typing import Optional


class AgentHubError(Exception):
    """Base class for all domain errors."""


class ForbiddenError(AgentHubError):
    """Tenant's plan does not include the agent. Never retried."""

    def __init__(self, tenant_id: str, agent_type: str):
        self.tenant_id = tenant_id
        self.agent_type = agent_type
        super().__init__(f"Tenant {tenant_id} is not entitled to agent '{agent_type}'")


class ConflictError(AgentHubError):
    """A non-terminal job already targets one of the requested items."""

    def __init__(self, existing_job_id: str, item_ref: Optional[str] = None):
        self.existing_job_id = existing_job_id
        self.item_ref = item_ref
        super().__init__(f"Item {item_ref} already targeted by active job {existing_job_id}")


class NoWorkError(AgentHubError):
    """The selection resolved to zero items. No job is created."""

    def __init__(self, message: str = "No leads found matching the criteria"):
        super().__init__(message)


class AgentConstructionError(AgentHubError):
    """Credentials or configuration prevented building an agent."""


class ItemProcessingError(AgentHubError):
    """A single item failed. Recorded; the batch continues."""


class UnknownAgentError(AgentHubError):
    """No constructor is registered for the agent type."""

    def __init__(self, agent_type: str):
        self.agent_type = agent_type
        super().__init__(f"Unknown agent type: {agent_type}")


class JobNotFoundError(AgentHubError):
    """Job does not exist or belongs to another tenant."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class InvalidTransitionError(AgentHubError):
    """Requested transition is not allowed from the job's current status."""


class RetryLimitError(InvalidTransitionError):
    """retry() after retry_count reached max_retries."""


class StorageError(AgentHubError):
    """The job store rejected a write after bounded retries."""
