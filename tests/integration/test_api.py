"""Integration tests for the psychosocial automation HTTP API.

Each test gets a fresh SQLite database and an httpx client bound to the
application through ASGITransport.
"""

import uuid
from collections.abc import Callable
from typing import Any

import pytest
from fastapi import status
from httpx import AsyncClient

_PREFIX = "/api/v1/psychosocial"
_UNKNOWN_ID = uuid.UUID("99999999-9999-9999-9999-999999999999")


# ---------------------------------------------------------------------------
# Action plan endpoints
# ---------------------------------------------------------------------------


class TestActionPlanEndpoints:
    """Manual generation and requirement query."""

    @pytest.mark.asyncio()
    async def test_manual_generation_then_duplicate(
        self,
        client: AsyncClient,
        company_id: uuid.UUID,
        seed_assessment: Callable[..., Any],
        make_answers: Callable[..., dict[str, float]],
    ) -> None:
        """The first call creates the plan, the second reports it exists."""
        assessment_id = await seed_assessment(make_answers(default=1, organizacao_trabalho=5), raw_score=84.0)
        url = f"{_PREFIX}/assessments/{assessment_id}/action-plan"

        first = await client.post(url, json={"company_id": str(company_id)})
        second = await client.post(url, json={"company_id": str(company_id)})

        assert first.status_code == status.HTTP_200_OK
        body = first.json()
        assert body["success"] is True
        assert body["plan_generated"] is True
        assert body["risk_level"] == "critico"
        assert body["triggered_by"] == "manual"
        assert body["action_plan_id"] is not None

        assert second.status_code == status.HTTP_200_OK
        again = second.json()
        assert again["plan_generated"] is False
        assert again["has_existing"] is True
        assert body["has_existing"] is False
        assert again["action_plan_id"] == body["action_plan_id"]

        requirement = await client.get(f"{url}/requirement")
        assert requirement.json() == {"requires": True, "risk_level": "critico", "has_existing": True}

    @pytest.mark.asyncio()
    async def test_manual_generation_without_body(
        self,
        client: AsyncClient,
        seed_assessment: Callable[..., Any],
        make_answers: Callable[..., dict[str, float]],
    ) -> None:
        """The request body is optional."""
        assessment_id = await seed_assessment(make_answers(default=2), raw_score=20.0)

        response = await client.post(f"{_PREFIX}/assessments/{assessment_id}/action-plan")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["plan_generated"] is False
        assert response.json()["risk_level"] == "baixo"

    @pytest.mark.asyncio()
    async def test_unknown_assessment_is_structured_failure(self, client: AsyncClient) -> None:
        """The gate reports a missing assessment in the body, not as an HTTP error."""
        response = await client.post(f"{_PREFIX}/assessments/{_UNKNOWN_ID}/action-plan")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["success"] is False
        assert body["risk_level"] == "unknown"
        assert body["action_plan_id"] is None

    @pytest.mark.asyncio()
    async def test_other_company_cannot_generate(
        self,
        client: AsyncClient,
        other_company_id: uuid.UUID,
        seed_assessment: Callable[..., Any],
        make_answers: Callable[..., dict[str, float]],
    ) -> None:
        """A company mismatch is reported as not found and nothing is created."""
        assessment_id = await seed_assessment(make_answers(default=5), raw_score=95.0)
        url = f"{_PREFIX}/assessments/{assessment_id}/action-plan"

        response = await client.post(url, json={"company_id": str(other_company_id)})

        assert response.json()["success"] is False
        requirement = await client.get(f"{url}/requirement")
        assert requirement.json()["has_existing"] is False


# ---------------------------------------------------------------------------
# Collective analysis endpoints
# ---------------------------------------------------------------------------


class TestCollectiveEndpoints:
    """Sector distribution query and collective plan generation."""

    @pytest.mark.asyncio()
    async def test_query_then_generate(
        self,
        client: AsyncClient,
        company_id: uuid.UUID,
        seed_sector_analyses: Callable[..., Any],
    ) -> None:
        """The query creates nothing; generation creates one plan per affected sector."""
        sector_id = await seed_sector_analyses(["alto", "critico", "baixo", "baixo", "baixo"])
        base = f"{_PREFIX}/companies/{company_id}"

        query = await client.get(f"{base}/collective-risk")
        first = await client.post(f"{base}/collective-action-plans")
        second = await client.post(f"{base}/collective-action-plans")

        assert query.status_code == status.HTTP_200_OK
        [sector] = query.json()
        assert sector["sector_id"] == str(sector_id)
        assert sector["total_employees"] == 5
        assert sector["risk_distribution"] == {"baixo": 3, "medio": 0, "alto": 1, "critico": 1}
        assert sector["collective_risk_level"] == "critico"
        assert sector["intervention_priority"] == "emergency"
        assert sector["requires_action_plan"] is True

        assert first.status_code == status.HTTP_200_OK
        assert first.json()["success"] is True
        assert first.json()["action_plans_generated"] == 1
        assert len(first.json()["action_plan_ids"]) == 1
        assert second.json()["action_plans_generated"] == 0
        assert second.json()["collective_risks"] == query.json()

    @pytest.mark.asyncio()
    async def test_company_without_sectors(self, client: AsyncClient) -> None:
        """A company with no analyses gets an empty, successful run."""
        response = await client.post(f"{_PREFIX}/companies/{_UNKNOWN_ID}/collective-action-plans")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["success"] is True
        assert body["collective_risks"] == []
        assert body["action_plans_generated"] == 0


# ---------------------------------------------------------------------------
# Processing endpoints
# ---------------------------------------------------------------------------


class TestProcessingEndpoints:
    """Assessment-completed trigger, synchronous processing, and jobs."""

    @pytest.mark.asyncio()
    async def test_assessment_completed_queues_job(
        self,
        client: AsyncClient,
        company_id: uuid.UUID,
        seed_assessment: Callable[..., Any],
        make_answers: Callable[..., dict[str, float]],
    ) -> None:
        """The trigger answers 202 with a job prioritised by the headline level."""
        assessment_id = await seed_assessment(make_answers(default=4), raw_score=65.0)

        response = await client.post(f"{_PREFIX}/assessments/{assessment_id}/completed")

        assert response.status_code == status.HTTP_202_ACCEPTED
        body = response.json()
        assert body["queued"] is True
        assert body["job"]["status"] == "pending"
        assert body["job"]["priority"] == "high"
        assert body["job"]["company_id"] == str(company_id)

        job = await client.get(f"{_PREFIX}/jobs/{body['job']['id']}")
        assert job.status_code == status.HTTP_200_OK
        assert job.json()["assessment_response_id"] == str(assessment_id)

    @pytest.mark.asyncio()
    async def test_assessment_completed_unknown_assessment(self, client: AsyncClient) -> None:
        """Queueing a missing assessment is a 404 with an error code."""
        response = await client.post(f"{_PREFIX}/assessments/{_UNKNOWN_ID}/completed")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "not_found"

    @pytest.mark.asyncio()
    async def test_assessment_completed_when_disabled(
        self,
        client: AsyncClient,
        seed_assessment: Callable[..., Any],
        seed_automation_config: Callable[..., Any],
        make_answers: Callable[..., dict[str, float]],
    ) -> None:
        """Companies with automatic processing off get queued=false."""
        await seed_automation_config(auto_process_enabled=False)
        assessment_id = await seed_assessment(make_answers(default=4), raw_score=65.0)

        response = await client.post(f"{_PREFIX}/assessments/{assessment_id}/completed")

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.json()["queued"] is False
        assert response.json()["job"] is None

    @pytest.mark.asyncio()
    async def test_process_assessment_synchronously(
        self,
        client: AsyncClient,
        seed_assessment: Callable[..., Any],
        make_answers: Callable[..., dict[str, float]],
    ) -> None:
        """The manual processing trigger returns the pipeline summary."""
        assessment_id = await seed_assessment(make_answers(default=1, condicoes_ambientais=5), raw_score=30.0)

        response = await client.post(f"{_PREFIX}/assessments/{assessment_id}/process")

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["success"] is True
        assert body["analyses_created"] == 5
        assert body["plans_created"] == 1
        assert body["highest_risk_level"] == "critico"

    @pytest.mark.asyncio()
    async def test_process_invalid_payload_is_422(
        self,
        client: AsyncClient,
        seed_assessment: Callable[..., Any],
    ) -> None:
        """Validation failures surface as 422 on the synchronous trigger."""
        assessment_id = await seed_assessment({"q1": 7}, raw_score=10.0)

        response = await client.post(f"{_PREFIX}/assessments/{assessment_id}/process")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["error_code"] == "validation_failed"

    @pytest.mark.asyncio()
    async def test_enqueue_job_explicitly(self, client: AsyncClient, company_id: uuid.UUID) -> None:
        """Jobs can be queued with an explicit priority and retry budget."""
        response = await client.post(
            f"{_PREFIX}/jobs",
            json={
                "assessment_response_id": str(uuid.uuid4()),
                "company_id": str(company_id),
                "priority": "critical",
                "max_retries": 5,
                "job_metadata": {"source": "backfill"},
            },
        )

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["priority"] == "critical"
        assert body["max_retries"] == 5
        assert body["retry_count"] == 0
        assert body["job_metadata"] == {"source": "backfill"}

    @pytest.mark.asyncio()
    async def test_enqueue_job_rejects_unknown_priority(self, client: AsyncClient, company_id: uuid.UUID) -> None:
        """Priorities outside the four tiers are rejected."""
        response = await client.post(
            f"{_PREFIX}/jobs",
            json={
                "assessment_response_id": str(uuid.uuid4()),
                "company_id": str(company_id),
                "priority": "urgent",
            },
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.asyncio()
    async def test_unknown_job_is_404(self, client: AsyncClient) -> None:
        """Missing jobs answer 404."""
        response = await client.get(f"{_PREFIX}/jobs/{_UNKNOWN_ID}")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "not_found"


# ---------------------------------------------------------------------------
# Scheduler control endpoints
# ---------------------------------------------------------------------------


class TestSchedulerControlEndpoints:
    """Processing status, pause, and resume."""

    @pytest.mark.asyncio()
    async def test_status_pause_resume(self, client: AsyncClient, company_id: uuid.UUID) -> None:
        """Pause and resume toggle the flag; status reports queue counts."""
        await client.post(
            f"{_PREFIX}/jobs",
            json={"assessment_response_id": str(uuid.uuid4()), "company_id": str(company_id)},
        )

        current = await client.get(f"{_PREFIX}/processing/status")
        paused = await client.post(f"{_PREFIX}/processing/pause")
        resumed = await client.post(f"{_PREFIX}/processing/resume")

        assert current.status_code == status.HTTP_200_OK
        assert current.json()["queue_length"] == 1
        assert current.json()["is_running"] is False
        assert current.json()["max_concurrency"] == 3
        assert paused.json()["is_paused"] is True
        assert resumed.json()["is_paused"] is False

    @pytest.mark.asyncio()
    async def test_health(self, client: AsyncClient) -> None:
        """Liveness endpoint."""
        response = await client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "ok"
