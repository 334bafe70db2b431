"""
Shared builders and fakes for CRM sync and enrichment tests.

Contains Attio-shaped payloads, helpers that insert model rows, and
in-memory stand-ins for the dispatch queue, scheduler and research agent.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

from crm_enrichment.models.crm_record import CrmRecord, EnrichmentStatus, RecordType
from crm_enrichment.models.integration import Integration, IntegrationStatus
from crm_enrichment.models.segment import Segment, SegmentMember, SegmentRecordType
from crm_enrichment.models.user import User
from crm_enrichment.services.connectors.firecrawl import (
    AgentJobState,
    AgentJobStatus,
    AgentSubmission,
)


# ---------------------------------------------------------------------------
# Attio payloads
# ---------------------------------------------------------------------------

def attio_company(record_id: str, name: Optional[str] = "Acme Robotics", domain: Optional[str] = "acme.io") -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    if name is not None:
        values["name"] = [{"value": name}]
    if domain is not None:
        values["domains"] = [{"domain": domain, "root_domain": domain}]
    return {"id": {"workspace_id": "ws-1", "object_id": "companies", "record_id": record_id}, "values": values}


def attio_person(
    record_id: str,
    name: Optional[str] = "Ada Lovelace",
    email: Optional[str] = "ada@acme.io",
    linkedin: Optional[str] = "https://www.linkedin.com/in/ada",
    company: Optional[str] = "Acme Robotics",
) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    if name is not None:
        values["name"] = [{"first_name": name.split()[0], "full_name": name}]
    if email is not None:
        values["email_addresses"] = [{"email_address": email}]
    if linkedin is not None:
        values["linkedin"] = [{"value": linkedin}]
    if company is not None:
        values["company"] = [{"value": company}]
    values["job_title"] = [{"value": "CTO"}]
    return {"id": {"workspace_id": "ws-1", "object_id": "people", "record_id": record_id}, "values": values}


def attio_list(list_id: str, name: str, api_slug: str, parent: str = "companies") -> Dict[str, Any]:
    return {
        "id": {"workspace_id": "ws-1", "list_id": list_id},
        "name": name,
        "api_slug": api_slug,
        "parent_object": [parent],
    }


def attio_entry(entry_id: str, record_id: str, parent: str = "companies") -> Dict[str, Any]:
    return {
        "id": {"workspace_id": "ws-1", "list_id": "l-1", "entry_id": entry_id},
        "parent_record_id": record_id,
        "parent_object": parent,
    }


# ---------------------------------------------------------------------------
# Model builders
# ---------------------------------------------------------------------------

def make_user(db, email: str = "owner@example.com", api_key: Optional[str] = None) -> User:
    user = User(email=email, name="Owner", api_key=api_key or f"key-{uuid4().hex}")
    db.add(user)
    db.commit()
    return user


def make_integration(db, user: User, status: IntegrationStatus = IntegrationStatus.CONNECTED) -> Integration:
    integration = Integration(
        user_id=user.id,
        provider="attio",
        display_name="Acme Workspace",
        api_key="attio-key",
        status=status,
    )
    db.add(integration)
    db.commit()
    return integration


def make_record(
    db,
    user: User,
    integration: Integration,
    record_type: RecordType = RecordType.COMPANY,
    name: str = "Acme Robotics",
    email: Optional[str] = None,
    raw_data: Optional[Dict[str, Any]] = None,
    enrichment_status: EnrichmentStatus = EnrichmentStatus.NONE,
    list_memberships: Optional[List[Dict[str, str]]] = None,
) -> CrmRecord:
    external_id = f"rec-{uuid4().hex[:8]}"
    if raw_data is None:
        raw_data = (
            attio_company(external_id, name=name)
            if record_type == RecordType.COMPANY
            else attio_person(external_id, name=name, email=email)
        )
    record = CrmRecord(
        user_id=user.id,
        integration_id=integration.id,
        external_id=external_id,
        record_type=record_type,
        name=name,
        email=email,
        raw_data=raw_data,
        enrichment_status=enrichment_status,
        enriched_data={"description": "old"} if enrichment_status == EnrichmentStatus.ENRICHED else None,
        list_memberships=list_memberships,
    )
    db.add(record)
    db.commit()
    return record


def make_segment(db, user: User, records: List[CrmRecord], name: str = "Targets") -> Segment:
    segment = Segment(
        user_id=user.id,
        name=name,
        record_type=SegmentRecordType.MIXED,
        member_count=len(records),
    )
    db.add(segment)
    db.flush()
    for record in records:
        db.add(SegmentMember(segment_id=segment.id, crm_record_id=record.id))
    db.commit()
    return segment


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

@dataclass
class FakeScheduler:
    calls: List[Dict[str, Any]] = field(default_factory=list)

    def run_after(self, delay_seconds: float, task_name: str, kwargs: Dict[str, Any]) -> str:
        self.calls.append({"delay": delay_seconds, "task": task_name, "kwargs": dict(kwargs)})
        return f"scheduled-{len(self.calls)}"

    def pop(self) -> Dict[str, Any]:
        return self.calls.pop(0)


@dataclass
class FakeDispatch:
    enqueued: List[Dict[str, Any]] = field(default_factory=list)

    def enqueue(self, task_name: str, kwargs: Dict[str, Any], **_: Any) -> str:
        self.enqueued.append({"task": task_name, "kwargs": dict(kwargs)})
        return str(uuid4())

    def enqueue_batch(self, task_name: str, items: List[Dict[str, Any]], **_: Any) -> List[str]:
        return [self.enqueue(task_name, kwargs) for kwargs in items]


class FakeAgent:
    """
    Research agent double. `submission` (or `submit_error`) answers
    start_job; `statuses` is consumed one entry per status check, the last
    entry repeating.
    """

    def __init__(
        self,
        submission: Optional[AgentSubmission] = None,
        submit_error: Optional[Exception] = None,
        statuses: Optional[List[AgentJobStatus]] = None,
    ) -> None:
        self.submission = submission or AgentSubmission(job_id="agent-job-1")
        self.submit_error = submit_error
        self.statuses = list(statuses or [AgentJobStatus(state=AgentJobState.PROCESSING)])
        self.started: List[Dict[str, Any]] = []
        self.status_checks: List[str] = []

    def start_job(self, prompt: str, schema: Dict[str, Any], urls: Optional[List[str]] = None) -> AgentSubmission:
        self.started.append({"prompt": prompt, "schema": schema, "urls": urls})
        if self.submit_error:
            raise self.submit_error
        return self.submission

    def get_job_status(self, agent_job_id: str) -> AgentJobStatus:
        self.status_checks.append(agent_job_id)
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]


ENRICHED_COMPANY = {
    "description": "Warehouse robotics",
    "industry": "Robotics",
    "founders": [{"name": "Grace Hopper", "role": "CEO"}],
}
