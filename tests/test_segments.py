"""
Tests for segments.py, records.py and retention.py.
"""
from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from crm_enrichment.models.crm_record import RecordType
from crm_enrichment.models.enrichment_job import EnrichmentJob, EnrichmentJobStatus
from crm_enrichment.models.segment import Segment, SegmentMember, SegmentRecordType
from crm_enrichment.services import records as records_service
from crm_enrichment.services import segments as segments_service
from crm_enrichment.services.errors import NotFoundError
from crm_enrichment.services.retention import delete_expired_jobs
from crm_enrichment.services.segments import EmptyListError

from tests.fixtures.crm_fixtures import make_integration, make_record, make_user


PIPELINE = [{"list_id": "l-1", "list_name": "Pipeline", "entry_id": "e-1"}]


@pytest.fixture
def owner(db):
    return make_user(db)


@pytest.fixture
def integration(db, owner):
    return make_integration(db, owner)


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------

class TestSegmentCrud:
    def test_create_and_list(self, db, owner):
        segment = segments_service.create_segment(db, owner, "Targets", SegmentRecordType.COMPANY, "Q3 list")

        assert segment.member_count == 0
        assert [s.id for s in segments_service.list_segments(db, owner)] == [segment.id]

    def test_update_only_given_fields(self, db, owner):
        segment = segments_service.create_segment(db, owner, "Targets", SegmentRecordType.COMPANY, "Q3 list")

        updated = segments_service.update_segment(db, owner, segment.id, name="Renamed")

        assert updated.name == "Renamed"
        assert updated.description == "Q3 list"

    def test_foreign_segment_is_not_found(self, db, owner):
        segment = segments_service.create_segment(db, owner, "Targets", SegmentRecordType.MIXED)
        intruder = make_user(db, email="intruder@example.com")

        with pytest.raises(NotFoundError):
            segments_service.get_segment(db, intruder, segment.id)
        assert segments_service.list_segments(db, intruder) == []

    def test_delete_removes_members(self, db, owner, integration):
        record = make_record(db, owner, integration)
        segment = segments_service.create_segment(db, owner, "Targets", SegmentRecordType.COMPANY)
        segments_service.add_members(db, owner, segment.id, [record.id])

        segments_service.delete_segment(db, owner, segment.id)

        assert db.query(Segment).count() == 0
        assert db.query(SegmentMember).count() == 0


class TestMembers:
    """Tests for adding and removing segment members."""

    def test_add_is_idempotent_and_counts(self, db, owner, integration):
        first = make_record(db, owner, integration, name="Acme")
        second = make_record(db, owner, integration, name="Beta")
        segment = segments_service.create_segment(db, owner, "Targets", SegmentRecordType.COMPANY)

        assert segments_service.add_members(db, owner, segment.id, [first.id]) == 1
        assert segments_service.add_members(db, owner, segment.id, [first.id, second.id]) == 1

        assert db.get(Segment, segment.id).member_count == 2
        assert [r.name for r in segments_service.get_members(db, owner, segment.id)] == ["Acme", "Beta"]

    def test_add_skips_foreign_and_unknown_records(self, db, owner, integration):
        intruder = make_user(db, email="intruder@example.com")
        foreign = make_record(db, intruder, make_integration(db, intruder))
        segment = segments_service.create_segment(db, owner, "Targets", SegmentRecordType.COMPANY)

        added = segments_service.add_members(db, owner, segment.id, [foreign.id, uuid4()])

        assert added == 0
        assert db.get(Segment, segment.id).member_count == 0

    def test_remove(self, db, owner, integration):
        first = make_record(db, owner, integration, name="Acme")
        second = make_record(db, owner, integration, name="Beta")
        segment = segments_service.create_segment(db, owner, "Targets", SegmentRecordType.COMPANY)
        segments_service.add_members(db, owner, segment.id, [first.id, second.id])

        segments_service.remove_members(db, owner, segment.id, [first.id])

        assert db.get(Segment, segment.id).member_count == 1
        assert [r.id for r in segments_service.get_members(db, owner, segment.id)] == [second.id]

    def test_get_members_limit(self, db, owner, integration):
        records = [make_record(db, owner, integration, name=f"Co {i}") for i in range(3)]
        segment = segments_service.create_segment(db, owner, "Targets", SegmentRecordType.COMPANY)
        segments_service.add_members(db, owner, segment.id, [r.id for r in records])

        assert len(segments_service.get_members(db, owner, segment.id, limit=2)) == 2


class TestSegmentFromList:
    def test_single_type_list(self, db, owner, integration):
        make_record(db, owner, integration, name="Acme", list_memberships=PIPELINE)
        make_record(db, owner, integration, name="Beta", list_memberships=PIPELINE)
        make_record(db, owner, integration, name="Outside")

        segment = segments_service.create_segment_from_list(db, owner, "l-1", "Pipeline")

        assert segment.name == "Pipeline"
        assert segment.record_type == SegmentRecordType.COMPANY
        assert segment.member_count == 2

    def test_mixed_list(self, db, owner, integration):
        make_record(db, owner, integration, name="Acme", list_memberships=PIPELINE)
        make_record(
            db, owner, integration,
            record_type=RecordType.PERSON, name="Ada Lovelace", list_memberships=PIPELINE,
        )

        segment = segments_service.create_segment_from_list(db, owner, "l-1", "Pipeline")

        assert segment.record_type == SegmentRecordType.MIXED

    def test_empty_list(self, db, owner, integration):
        make_record(db, owner, integration, name="Acme")

        with pytest.raises(EmptyListError):
            segments_service.create_segment_from_list(db, owner, "l-1", "Pipeline")
        assert db.query(Segment).count() == 0


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class TestRecordQueries:
    def test_list_by_type(self, db, owner, integration):
        make_record(db, owner, integration, name="Beta")
        make_record(db, owner, integration, name="Acme")
        make_record(db, owner, integration, record_type=RecordType.PERSON, name="Ada Lovelace")

        companies = records_service.list_records(db, owner, RecordType.COMPANY)

        assert [r.name for r in companies] == ["Acme", "Beta"]

    def test_search_matches_name_or_email(self, db, owner, integration):
        make_record(db, owner, integration, name="Acme")
        make_record(
            db, owner, integration,
            record_type=RecordType.PERSON, name="Grace Hopper", email="grace@acme.io",
        )
        make_record(db, owner, integration, name="Beta")

        found = records_service.search_records(db, owner, "ACME")

        assert sorted(r.name for r in found) == ["Acme", "Grace Hopper"]

    def test_get_foreign_record_is_not_found(self, db, owner, integration):
        record = make_record(db, owner, integration)
        intruder = make_user(db, email="intruder@example.com")

        with pytest.raises(NotFoundError):
            records_service.get_record(db, intruder, record.id)

    def test_records_in_list(self, db, owner, integration):
        member = make_record(db, owner, integration, list_memberships=PIPELINE)
        make_record(db, owner, integration, list_memberships=[{"list_id": "l-2", "list_name": "Other", "entry_id": "e-9"}])

        assert [r.id for r in records_service.records_in_list(db, owner, "l-1")] == [member.id]


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

class TestRetention:
    def make_job(self, db, owner, record, status, age_days):
        job = EnrichmentJob(
            user_id=owner.id,
            crm_record_id=record.id,
            status=status,
            urls=["Acme Robotics"],
            created_at=datetime.utcnow() - timedelta(days=age_days),
        )
        db.add(job)
        db.commit()
        return job.id

    def test_only_old_terminal_jobs_deleted(self, db, owner, integration):
        record = make_record(db, owner, integration)
        old_done = self.make_job(db, owner, record, EnrichmentJobStatus.COMPLETED, 40)
        old_failed = self.make_job(db, owner, record, EnrichmentJobStatus.FAILED, 40)
        old_running = self.make_job(db, owner, record, EnrichmentJobStatus.RUNNING, 40)
        old_pending = self.make_job(db, owner, record, EnrichmentJobStatus.PENDING, 40)
        recent_done = self.make_job(db, owner, record, EnrichmentJobStatus.COMPLETED, 1)

        deleted = delete_expired_jobs(db, retention_days=30)

        assert deleted == 2
        db.expire_all()
        remaining = {job.id for job in db.query(EnrichmentJob).all()}
        assert remaining == {old_running, old_pending, recent_done}
        assert old_done not in remaining and old_failed not in remaining
