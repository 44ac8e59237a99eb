"""
Tests for the database backends
"""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from molted.database import DatabaseClient, InMemoryDatabase
from molted.models import JobStatus, PaymentStatus
from tests.factories import AgentFactory, CompletionFactory, JobFactory, TransactionFactory


class TestInMemoryDatabase:
    """Test conditional updates on the in-memory store"""

    @pytest.mark.asyncio
    async def test_mark_job_paid_once(self, tx_hash):
        db = InMemoryDatabase()
        job = db.add_job(JobFactory())

        assert await db.mark_job_paid(job.id, tx_hash, datetime.utcnow()) is True
        assert await db.mark_job_paid(job.id, "0x" + "cd" * 32, datetime.utcnow()) is False

        stored = await db.get_job(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.payment_tx_hash == tx_hash

    @pytest.mark.asyncio
    async def test_reject_after_paid_fails(self, tx_hash):
        db = InMemoryDatabase()
        job = db.add_job(JobFactory())
        await db.mark_job_paid(job.id, tx_hash, datetime.utcnow())

        assert await db.mark_job_rejected(job.id) is False

    @pytest.mark.asyncio
    async def test_review_completion_once(self):
        db = InMemoryDatabase()
        completion = db.add_completion(CompletionFactory())

        assert await db.review_completion(completion.id, True, datetime.utcnow()) is True
        assert await db.review_completion(completion.id, False, datetime.utcnow()) is False
        assert (await db.get_completion_for_job(completion.job_id)).approved is True

    @pytest.mark.asyncio
    async def test_one_completion_per_job(self):
        db = InMemoryDatabase()

        first = await db.create_completion("job-1", "agent-1", "done")
        second = await db.create_completion("job-1", "agent-1", "done again")

        assert first is not None
        assert second is None

    @pytest.mark.asyncio
    async def test_transaction_lookup_ignores_case(self):
        db = InMemoryDatabase()
        entry = await db.record_transaction(TransactionFactory(id=None, tx_hash="0x" + "AB" * 32))

        assert entry.id is not None
        assert (await db.get_transaction_by_hash("0x" + "ab" * 32)).job_id == entry.job_id

    @pytest.mark.asyncio
    async def test_returned_models_are_copies(self):
        db = InMemoryDatabase()
        job = db.add_job(JobFactory())

        fetched = await db.get_job(job.id)
        fetched.status = JobStatus.CANCELLED

        assert db.jobs[job.id].status == JobStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_paid_hash_cannot_settle_second_job(self, tx_hash):
        db = InMemoryDatabase()
        first = db.add_job(JobFactory())
        second = db.add_job(JobFactory())

        assert await db.mark_job_paid(first.id, tx_hash, datetime.utcnow()) is True
        assert await db.mark_job_paid(second.id, tx_hash.upper().replace("0X", "0x"), datetime.utcnow()) is False

        assert (await db.get_job_by_payment_tx_hash(tx_hash)).id == first.id
        assert (await db.get_job(second.id)).payment_status == PaymentStatus.AWAITING_PAYMENT

    @pytest.mark.asyncio
    async def test_touch_agent_sets_last_active(self):
        db = InMemoryDatabase()
        agent = db.add_agent(AgentFactory())

        await db.touch_agent(agent.id)

        assert (await db.get_agent(agent.id)).last_active_at is not None


class TestDatabaseClient:
    """Test Supabase query construction"""

    @pytest.fixture
    def supabase(self):
        client = MagicMock()
        client.table.return_value.select.return_value.ilike.return_value.execute.return_value.data = []
        return client

    @pytest.mark.asyncio
    async def test_mark_job_paid_filters(self, supabase, tx_hash):
        query = supabase.table.return_value.update.return_value
        query.eq.return_value.eq.return_value.neq.return_value.execute.return_value.data = [{"id": "job-1"}]
        db = DatabaseClient("", "", client=supabase)

        assert await db.mark_job_paid("job-1", tx_hash, datetime(2026, 1, 1)) is True

        supabase.table.assert_called_with("jobs")
        update = supabase.table.return_value.update.call_args[0][0]
        assert update["status"] == "completed"
        assert update["payment_status"] == "paid"
        assert update["payment_tx_hash"] == tx_hash
        query.eq.assert_called_once_with("id", "job-1")
        query.eq.return_value.eq.assert_called_once_with("status", "in_progress")
        query.eq.return_value.eq.return_value.neq.assert_called_once_with("payment_status", "paid")

    @pytest.mark.asyncio
    async def test_mark_job_paid_lost(self, supabase, tx_hash):
        query = supabase.table.return_value.update.return_value
        query.eq.return_value.eq.return_value.neq.return_value.execute.return_value.data = []
        db = DatabaseClient("", "", client=supabase)

        assert await db.mark_job_paid("job-1", tx_hash, datetime(2026, 1, 1)) is False

    @pytest.mark.asyncio
    async def test_mark_job_paid_refuses_hash_held_by_other_job(self, supabase, tx_hash):
        other = JobFactory(status=JobStatus.COMPLETED, payment_status=PaymentStatus.PAID, payment_tx_hash=tx_hash)
        select = supabase.table.return_value.select.return_value
        select.ilike.return_value.execute.return_value.data = [other.model_dump(mode="json")]
        db = DatabaseClient("", "", client=supabase)

        assert await db.mark_job_paid("job-1", tx_hash, datetime(2026, 1, 1)) is False

        select.ilike.assert_called_once_with("payment_tx_hash", tx_hash)
        supabase.table.return_value.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_mark_job_paid_unique_violation(self, supabase, tx_hash):
        query = supabase.table.return_value.update.return_value
        query.eq.return_value.eq.return_value.neq.return_value.execute.side_effect = APIError(
            {"code": "23505", "message": "duplicate key value violates unique constraint"}
        )
        db = DatabaseClient("", "", client=supabase)

        assert await db.mark_job_paid("job-1", tx_hash, datetime(2026, 1, 1)) is False

    @pytest.mark.asyncio
    async def test_mark_job_paid_other_api_error_raises(self, supabase, tx_hash):
        query = supabase.table.return_value.update.return_value
        query.eq.return_value.eq.return_value.neq.return_value.execute.side_effect = APIError(
            {"code": "42501", "message": "permission denied"}
        )
        db = DatabaseClient("", "", client=supabase)

        with pytest.raises(APIError):
            await db.mark_job_paid("job-1", tx_hash, datetime(2026, 1, 1))

    @pytest.mark.asyncio
    async def test_get_job(self, supabase):
        job = JobFactory()
        select = supabase.table.return_value.select.return_value
        select.eq.return_value.execute.return_value.data = [job.model_dump(mode="json")]
        db = DatabaseClient("", "", client=supabase)

        fetched = await db.get_job(job.id)

        assert fetched.id == job.id
        assert fetched.payment_status == PaymentStatus.AWAITING_PAYMENT
