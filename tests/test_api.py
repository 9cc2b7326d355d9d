"""HTTP API tests for reconciliation and recurring endpoints."""

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from ledgermatch.models import RecurringPatternStatus
from ledgermatch.security import create_access_token
from tests.factories import InternalTransactionFactory, RecurringPatternFactory


def _today() -> date:
    return datetime.now(UTC).date()


@pytest.mark.asyncio
async def test_health(public_client):
    response = await public_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_request_id_is_echoed(public_client):
    response = await public_client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("method", "path"),
    [("get", "/recurring/patterns"), ("post", "/recurring/detect"), ("get", "/recurring/upcoming-bills")],
)
async def test_requires_bearer_token(public_client, method, path):
    response = await getattr(public_client, method)(path)

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_rejects_invalid_token(public_client):
    response = await public_client.get("/recurring/patterns", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_rejects_expired_token(public_client):
    token = create_access_token(data={"sub": str(uuid4())}, expires_delta=timedelta(seconds=-1))

    response = await public_client.get("/recurring/patterns", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


class TestReconciliationEndpoints:
    async def _seed_ledger(self, db, user_id, account_id):
        await InternalTransactionFactory.create_async(
            db, user_id=user_id, account_id=account_id, amount=Decimal("-1200.00"), txn_date=date(2024, 1, 3)
        )
        await InternalTransactionFactory.create_async(
            db, user_id=user_id, account_id=account_id, amount=Decimal("3000.00"), txn_date=date(2024, 1, 25)
        )
        await db.commit()

    async def _create_session(self, client, account_id, balance="1800.00"):
        response = await client.post(
            "/reconciliation/sessions",
            json={
                "account_id": str(account_id),
                "statement_start_date": "2024-01-01",
                "statement_end_date": "2024-01-31",
                "statement_end_balance": balance,
            },
        )
        assert response.status_code == 201, response.text
        return response.json()

    @pytest.mark.asyncio
    async def test_create_session(self, client, db, user_id, account_id):
        await self._seed_ledger(db, user_id, account_id)

        body = await self._create_session(client, account_id)

        assert body["status"] == "in_progress"
        assert Decimal(body["calculated_balance"]) == Decimal("1800.00")
        assert body["is_balanced"] is True
        assert body["item_counts"] == {"matched": 0, "unmatched_app": 0, "unmatched_bank": 0}

    @pytest.mark.asyncio
    async def test_create_session_rejects_inverted_period(self, client, account_id):
        response = await client.post(
            "/reconciliation/sessions",
            json={
                "account_id": str(account_id),
                "statement_start_date": "2024-02-01",
                "statement_end_date": "2024-01-31",
                "statement_end_balance": "0",
            },
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_match_then_complete(self, client, db, user_id, account_id):
        await self._seed_ledger(db, user_id, account_id)
        session = await self._create_session(client, account_id)
        payload = {
            "external_transactions": [
                {"external_id": "B-1", "amount": "-1200.00", "txn_date": "2024-01-03", "description": "RENT"},
                {"external_id": "B-2", "amount": "-3.00", "txn_date": "2024-01-09", "description": "FEE"},
            ]
        }

        response = await client.post(f"/reconciliation/sessions/{session['id']}/match", json=payload)

        assert response.status_code == 200, response.text
        result = response.json()
        assert result["exact_matches"] == 1
        assert result["unmatched_bank_count"] == 1
        assert result["unmatched_app_count"] == 1
        assert result["overall_match_percentage"] == 50.0
        assert result["matched"][0]["external_id"] == "B-1"
        assert result["matched"][0]["method"] == "Exact"
        assert result["matched"][0]["reason"].startswith("Matched on: amount, date")
        assert result["unmatched_bank"][0]["external_id"] == "B-2"

        items = (await client.get(f"/reconciliation/sessions/{session['id']}/items")).json()
        assert items["total"] == 3

        detail = (await client.get(f"/reconciliation/sessions/{session['id']}")).json()
        assert detail["item_counts"] == {"matched": 1, "unmatched_app": 1, "unmatched_bank": 1}

        refused = await client.post(f"/reconciliation/sessions/{session['id']}/complete", json={})
        assert refused.status_code == 409

        forced = await client.post(f"/reconciliation/sessions/{session['id']}/complete", json={"force": True})
        assert forced.status_code == 200
        assert forced.json()["status"] == "completed"

        rerun = await client.post(f"/reconciliation/sessions/{session['id']}/match", json=payload)
        assert rerun.status_code == 409

    @pytest.mark.asyncio
    async def test_match_rejects_negative_tolerance(self, client, account_id):
        session = await self._create_session(client, account_id, balance="0")

        response = await client.post(
            f"/reconciliation/sessions/{session['id']}/match",
            json={"external_transactions": [], "amount_tolerance": "-0.50"},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_session(self, client):
        missing = uuid4()

        assert (await client.get(f"/reconciliation/sessions/{missing}")).status_code == 404
        assert (await client.post(f"/reconciliation/sessions/{missing}/match", json={})).status_code == 404
        assert (await client.post(f"/reconciliation/sessions/{missing}/cancel")).status_code == 404

    @pytest.mark.asyncio
    async def test_cancel(self, client, account_id):
        session = await self._create_session(client, account_id, balance="0")

        response = await client.post(f"/reconciliation/sessions/{session['id']}/cancel")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"


class TestRecurringEndpoints:
    @pytest.mark.asyncio
    async def test_detect_list_and_forecast(self, client, db, user_id):
        today = _today()
        for days_ago in (90, 60, 30):
            await InternalTransactionFactory.create_async(
                db,
                user_id=user_id,
                description="NETFLIX.COM",
                amount=Decimal("-15.99"),
                txn_date=today - timedelta(days=days_ago),
            )
        await db.commit()

        detected = await client.post("/recurring/detect")
        assert detected.status_code == 200
        assert detected.json() == {"patterns_upserted": 1}

        patterns = (await client.get("/recurring/patterns")).json()
        assert patterns["total"] == 1
        pattern = patterns["items"][0]
        assert pattern["merchant_name"] == "Netflix.com"
        assert pattern["interval_name"] == "Monthly"
        assert pattern["status"] == "active"
        assert Decimal(patterns["total_monthly_cost"]) == Decimal(pattern["monthly_cost"])

        bills = (await client.get("/recurring/upcoming-bills")).json()
        assert bills["total_bills_count"] == 1
        assert bills["bills"][0]["days_until_due"] == 0
        assert Decimal(bills["total_expected_amount"]) == Decimal("15.99")

    @pytest.mark.asyncio
    async def test_upcoming_bills_horizon_validation(self, client):
        response = await client.get("/recurring/upcoming-bills", params={"days_ahead": 400})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_match_transaction_and_occurrences(self, client, db, user_id):
        today = _today()
        pattern = await RecurringPatternFactory.create_async(
            db, user_id=user_id, last_observed_at=today - timedelta(days=30)
        )
        txn = await InternalTransactionFactory.create_async(
            db, user_id=user_id, description="Netflix.com", amount=Decimal("-15.99"), txn_date=today
        )
        await db.commit()

        response = await client.post(f"/recurring/transactions/{txn.id}/match")

        assert response.status_code == 200
        assert response.json() == {"transaction_id": str(txn.id), "matched": True}

        occurrences = (await client.get(f"/recurring/patterns/{pattern.id}/occurrences")).json()
        assert occurrences["total"] == 1
        assert occurrences["items"][0]["outcome"] == "posted"
        assert occurrences["items"][0]["days_late"] == 0

    @pytest.mark.asyncio
    async def test_match_unknown_transaction(self, client):
        response = await client.post(f"/recurring/transactions/{uuid4()}/match")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_sweep_records_misses(self, client, db, user_id):
        await RecurringPatternFactory.create_async(
            db, user_id=user_id, last_observed_at=_today() - timedelta(days=31)
        )
        await db.commit()

        response = await client.post("/recurring/sweep")

        assert response.status_code == 200
        assert response.json() == {"missed_recorded": 1}

        patterns = (await client.get("/recurring/patterns")).json()
        assert patterns["items"][0]["status"] == "at_risk"
        assert patterns["items"][0]["consecutive_misses"] == 1

    @pytest.mark.asyncio
    async def test_pause_resume_cancel(self, client, db, user_id):
        pattern = await RecurringPatternFactory.create_async(db, user_id=user_id)
        await db.commit()

        paused = await client.post(f"/recurring/patterns/{pattern.id}/pause")
        assert paused.json()["status"] == "paused"
        assert (await client.get("/recurring/patterns")).json()["total"] == 0

        resumed = await client.post(f"/recurring/patterns/{pattern.id}/resume")
        assert resumed.json()["status"] == "active"

        cancelled = await client.post(f"/recurring/patterns/{pattern.id}/cancel")
        assert cancelled.json()["status"] == RecurringPatternStatus.CANCELLED.value

        conflict = await client.post(f"/recurring/patterns/{pattern.id}/pause")
        assert conflict.status_code == 409

        listed = (await client.get("/recurring/patterns", params={"include_inactive": True})).json()
        assert listed["total"] == 1
        assert listed["active_count"] == 0

    @pytest.mark.asyncio
    async def test_other_users_pattern_is_not_found(self, client, db):
        pattern = await RecurringPatternFactory.create_async(db, user_id=uuid4())
        await db.commit()

        response = await client.post(f"/recurring/patterns/{pattern.id}/pause")

        assert response.status_code == 404
