"""
Domain models for AgentHub.
Pure data classes with no external dependencies (Clean Architecture inner layer).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class AgentType(Enum):
    """Closed set of agent variants a tenant can subscribe to."""
    FALCON = "falcon"      # lead qualification
    SAGE = "sage"          # company research / enrichment
    SENTINEL = "sentinel"  # inbound reply triage


class JobStatus(Enum):
    """State machine states for the job lifecycle."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


ACTIVE_STATUSES = (JobStatus.QUEUED, JobStatus.PROCESSING)


class JobKind(Enum):
    """How a job entered the system."""
    SINGLE = "single"
    BULK_CHILD = "bulk-child"
    AUTO = "auto"


class EventType(Enum):
    """Lifecycle events pushed to a tenant's live connections."""
    QUEUED = "job.queued"
    PROGRESS = "job.progress"
    COMPLETED = "job.completed"
    FAILED = "job.failed"
    CANCELLED = "job.cancelled"


class SelectionMode(Enum):
    """Bulk selection modes understood by the fan-out planner."""
    EXPLICIT = "explicit"
    FILTER = "filter"
    ALL_UNQUALIFIED = "all_unqualified"


@dataclass(frozen=True)
class TenantCredentialBundle:
    """Decrypted credentials for one (tenant, agent type). Lives only in memory."""
    tenant_id: str
    agent_type: str
    secrets: dict = field(default_factory=dict)
    enabled: bool = True
    configuration: dict = field(default_factory=dict)

    def get_secret(self, name: str) -> Optional[str]:
        return self.secrets.get(name)

    def __repr__(self) -> str:
        # Never leak secret values into logs
        return (
            f"TenantCredentialBundle(tenant_id={self.tenant_id!r}, "
            f"agent_type={self.agent_type!r}, keys={sorted(self.secrets)}, "
            f"enabled={self.enabled})"
        )


@dataclass
class Lead:
    """One item of work: a tenant's lead."""
    id: str
    tenant_id: str
    full_name: str = ""
    company: str = ""
    company_domain: str = ""
    industry: str = ""
    location: str = ""
    lead_status: str = "new"
    qualification_rating: Optional[str] = None
    qualification_score: Optional[int] = None
    last_message: str = ""
    results: dict = field(default_factory=dict)  # agent_type -> last output

    @property
    def is_qualified(self) -> bool:
        return self.qualification_rating is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "full_name": self.full_name,
            "company": self.company,
            "company_domain": self.company_domain,
            "industry": self.industry,
            "location": self.location,
            "lead_status": self.lead_status,
            "qualification_rating": self.qualification_rating,
            "qualification_score": self.qualification_score,
            "last_message": self.last_message,
            "results": self.results,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Lead":
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            full_name=data.get("full_name", ""),
            company=data.get("company", ""),
            company_domain=data.get("company_domain", ""),
            industry=data.get("industry", ""),
            location=data.get("location", ""),
            lead_status=data.get("lead_status", "new"),
            qualification_rating=data.get("qualification_rating"),
            qualification_score=data.get("qualification_score"),
            last_message=data.get("last_message", ""),
            results=dict(data.get("results") or {}),
        )


@dataclass
class ItemResult:
    """Outcome of one agent invocation on one item."""
    item_ref: str
    success: bool
    output: dict = field(default_factory=dict)
    error: Optional[str] = None


@dataclass(frozen=True)
class LeadFilter:
    """Predicate for FILTER-mode bulk selections. Unset fields match everything."""
    industry: Optional[str] = None
    location: Optional[str] = None      # case-insensitive substring
    lead_status: Optional[str] = None
    qualified: Optional[bool] = None

    def matches(self, lead: Lead) -> bool:
        if self.industry is not None and lead.industry != self.industry:
            return False
        if self.location is not None and self.location.lower() not in lead.location.lower():
            return False
        if self.lead_status is not None and lead.lead_status != self.lead_status:
            return False
        if self.qualified is not None and lead.is_qualified != self.qualified:
            return False
        return True


@dataclass(frozen=True)
class BulkSelection:
    """Ephemeral bulk request: consumed once by the planner, never persisted."""
    mode: SelectionMode
    lead_ids: tuple = ()
    filters: LeadFilter = field(default_factory=LeadFilter)
    include_already_processed: bool = False
    priority: int = 5


@dataclass
class Job:
    """The unit of scheduled, tracked work spanning one or many items."""
    tenant_id: str
    agent_type: str
    item_refs: list
    id: str = field(default_factory=lambda: f"job_{uuid.uuid4().hex}")
    job_kind: JobKind = JobKind.SINGLE
    status: JobStatus = JobStatus.QUEUED
    priority: int = 0
    items_total: int = 0
    items_processed: int = 0
    items_succeeded: int = 0
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    processed_refs: list = field(default_factory=list)  # attempted at least once
    succeeded_refs: list = field(default_factory=list)
    item_errors: dict = field(default_factory=dict)      # item_ref -> detail

    def __post_init__(self):
        if not self.items_total:
            self.items_total = len(self.item_refs)

    def pending_refs(self) -> list:
        """Items not yet succeeded, in original order."""
        done = set(self.succeeded_refs)
        return [ref for ref in self.item_refs if ref not in done]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "agent_type": self.agent_type,
            "job_kind": self.job_kind.value,
            "status": self.status.value,
            "priority": self.priority,
            "item_refs": list(self.item_refs),
            "items_total": self.items_total,
            "items_processed": self.items_processed,
            "items_succeeded": self.items_succeeded,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "last_error": self.last_error,
            "processed_refs": list(self.processed_refs),
            "succeeded_refs": list(self.succeeded_refs),
            "item_errors": dict(self.item_errors),
        }

    def fields(self, *names: str) -> dict:
        """Serialized subset of attributes, used for partial store updates."""
        data = self.to_dict()
        return {name: data[name] for name in names}

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            agent_type=data["agent_type"],
            item_refs=list(data.get("item_refs", [])),
            job_kind=JobKind(data.get("job_kind", JobKind.SINGLE.value)),
            status=JobStatus(data.get("status", JobStatus.QUEUED.value)),
            priority=data.get("priority", 0),
            items_total=data.get("items_total", 0),
            items_processed=data.get("items_processed", 0),
            items_succeeded=data.get("items_succeeded", 0),
            retry_count=data.get("retry_count", 0),
            max_retries=data.get("max_retries", 3),
            created_at=_parse_dt(data.get("created_at")) or utc_now(),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            last_error=data.get("last_error"),
            processed_refs=list(data.get("processed_refs", [])),
            succeeded_refs=list(data.get("succeeded_refs", [])),
            item_errors=dict(data.get("item_errors", {})),
        )


@dataclass
class JobEvent:
    """A lifecycle notification for a tenant's live connections."""
    event_type: EventType
    job_id: str
    tenant_id: str
    payload: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "type": self.event_type.value,
            "jobId": self.job_id,
            "tenantId": self.tenant_id,
            "timestamp": self.timestamp.isoformat(),
            "data": self.payload,
        }


@dataclass
class SubmitResult:
    """Returned to callers of the submission boundary."""
    job_id: str
    items_total: int
    deduplicated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "items_total": self.items_total,
            "deduplicated": self.deduplicated,
        }
