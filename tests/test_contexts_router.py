"""
Contexts API Router Tests

Tests for the /api/contexts endpoints.
Run with: pytest tests/test_contexts_router.py -v
"""

import pytest

# Mark entire module as medium - uses TestClient with mocked dependencies
pytestmark = pytest.mark.medium
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, Mock

from fastapi.testclient import TestClient

from taskscope.api.deps import get_context_service, get_db, get_engine
from taskscope.api.main import app
from taskscope.context_collection.models import (
    CodeContext,
    CollectionSummary,
    ContextCollectionResult,
    ContextSource,
    ContextType,
    FreshnessReport,
    ParsedStackTrace,
    StackTraceFrame,
    TaskType,
)
from taskscope.context_collection.services import (
    ContextCollectionEngine,
    ContextCollectionError,
    ContextNotFoundError,
)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_service():
    """Create a mock context tool service."""
    return Mock()


@pytest.fixture
def client(mock_service):
    """Create a test client with overridden dependencies."""
    app.dependency_overrides[get_context_service] = lambda: mock_service

    yield TestClient(app)

    # Clean up overrides after test
    app.dependency_overrides.clear()


@pytest.fixture
def sample_context():
    return CodeContext(
        id="BUG-1_context_0",
        task_id="BUG-1",
        task_type=TaskType.BUG,
        context_type=ContextType.SNIPPET,
        file_path="src/user.js",
        start_line=35,
        end_line=49,
        content="return user.name.toUpperCase();",
        description="function in user.js (lines 35-49)",
        relevance_score=0.82,
        keywords=["processUser"],
        date_collected=datetime(2026, 1, 10, tzinfo=timezone.utc),
    )


TASK = {
    "task_id": "BUG-1",
    "task_type": "bug",
    "title": "Profile save crashes",
    "description": "TypeError: Cannot read property 'name' of undefined",
}


# -----------------------------------------------------------------------------
# Collection
# -----------------------------------------------------------------------------


class TestCollectEndpoint:

    def test_collect(self, client, mock_service, sample_context):
        trace = ParsedStackTrace(
            language="javascript",
            frames=[StackTraceFrame(language="javascript", raw_line="at processUser (/app/src/user.js:45:12)",
                                    function_name="processUser", file_path="/app/src/user.js", line_number=45)],
            is_valid=True,
            confidence=0.63,
            error_type="TypeError",
        )
        mock_service.collect = AsyncMock(return_value=ContextCollectionResult(
            contexts=[sample_context],
            summary=CollectionSummary(total_contexts=1, stack_traces_found=1),
            stack_traces=[trace],
        ))

        response = client.post("/api/contexts/collect", json=TASK)

        assert response.status_code == 200
        data = response.json()
        assert data["contexts"][0]["id"] == "BUG-1_context_0"
        assert data["summary"]["stack_traces_found"] == 1
        assert data["stack_traces"][0]["frames"][0]["line_number"] == 45

        task = mock_service.collect.call_args[0][0]
        assert task.task_id == "BUG-1"
        assert task.task_type == TaskType.BUG

    def test_missing_field_is_400(self, client, mock_service):
        mock_service.collect = AsyncMock()

        response = client.post("/api/contexts/collect", json={"task_id": "BUG-1", "task_type": "bug"})

        assert response.status_code == 400
        mock_service.collect.assert_not_called()

    def test_unknown_task_type_is_400(self, client, mock_service):
        mock_service.collect = AsyncMock()

        response = client.post("/api/contexts/collect", json={**TASK, "task_type": "chore"})

        assert response.status_code == 400

    def test_collection_failure_is_500(self, client, mock_service):
        mock_service.collect = AsyncMock(
            side_effect=ContextCollectionError("Context collection failed for task BUG-1: boom", task_id="BUG-1")
        )

        response = client.post("/api/contexts/collect", json=TASK)

        assert response.status_code == 500
        assert "boom" in response.json()["detail"]


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------


class TestReadEndpoints:

    def test_get_contexts(self, client, mock_service, sample_context):
        mock_service.get.return_value = [sample_context]

        response = client.get("/api/contexts/BUG-1")

        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == ["BUG-1_context_0"]
        mock_service.get.assert_called_once_with("BUG-1", None)

    def test_get_contexts_with_type(self, client, mock_service):
        mock_service.get.return_value = []

        response = client.get("/api/contexts/BUG-1", params={"task_type": "feature"})

        assert response.status_code == 200
        mock_service.get.assert_called_once_with("BUG-1", TaskType.FEATURE)

    def test_freshness(self, client, mock_service, sample_context):
        mock_service.check_freshness.return_value = FreshnessReport(
            task_id="BUG-1", threshold_hours=12, stale=[sample_context.model_copy(update={"is_stale": True})],
        )

        response = client.get("/api/contexts/BUG-1/freshness", params={"threshold_hours": 12})

        assert response.status_code == 200
        data = response.json()
        assert data["fresh"] == []
        assert data["stale"][0]["is_stale"] is True
        mock_service.check_freshness.assert_called_once_with("BUG-1", 12)

    def test_freshness_threshold_must_be_positive(self, client, mock_service):
        response = client.get("/api/contexts/BUG-1/freshness", params={"threshold_hours": 0})

        assert response.status_code == 400
        mock_service.check_freshness.assert_not_called()


# -----------------------------------------------------------------------------
# Manual contexts
# -----------------------------------------------------------------------------


class TestManageEndpoints:

    def test_add_context(self, client, mock_service, sample_context):
        manual = sample_context.model_copy(update={"id": "BUG-1_manual_1", "source": ContextSource.MANUAL})
        mock_service.add.return_value = manual

        response = client.post("/api/contexts", json={
            "task_id": "BUG-1",
            "task_type": "bug",
            "context_type": "snippet",
            "file_path": "src/user.js",
            "content": "return user.name.toUpperCase();",
            "description": "Where the crash happens",
        })

        assert response.status_code == 201
        assert response.json()["source"] == "manual"
        created = mock_service.add.call_args[0][0]
        assert created.relevance_score == 0.8

    def test_add_context_missing_content(self, client, mock_service):
        response = client.post("/api/contexts", json={"task_id": "BUG-1", "task_type": "bug"})

        assert response.status_code == 400
        mock_service.add.assert_not_called()

    def test_update_context(self, client, mock_service, sample_context):
        mock_service.update.return_value = sample_context.model_copy(update={"relevance_score": 0.4})

        response = client.patch("/api/contexts/item/BUG-1_context_0", json={"relevance_score": 0.4})

        assert response.status_code == 200
        assert response.json()["relevance_score"] == 0.4

    def test_update_unknown_context(self, client, mock_service):
        mock_service.update.side_effect = ContextNotFoundError("nope")

        response = client.patch("/api/contexts/item/nope", json={"description": "x"})

        assert response.status_code == 404

    def test_update_without_fields(self, client, mock_service):
        mock_service.update.side_effect = ValueError("No valid update fields provided")

        response = client.patch("/api/contexts/item/BUG-1_context_0", json={})

        assert response.status_code == 400
        assert response.json()["detail"] == "No valid update fields provided"

    def test_remove_context(self, client, mock_service):
        response = client.delete("/api/contexts/item/BUG-1_context_0")

        assert response.status_code == 204
        mock_service.remove.assert_called_once_with("BUG-1_context_0")

    def test_remove_unknown_context(self, client, mock_service):
        mock_service.remove.side_effect = ContextNotFoundError("nope")

        response = client.delete("/api/contexts/item/nope")

        assert response.status_code == 404


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


class TestHealth:

    def test_health(self, client, code_root):
        engine = ContextCollectionEngine(str(code_root))
        app.dependency_overrides[get_engine] = lambda: engine

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["context_root"] == str(code_root.resolve())
        assert data["signal_extractor"] == "simple"
        assert data["cached_tasks"] == 0

    def test_database_health(self, client):
        db = MagicMock()
        db.cursor.return_value.__enter__.return_value.fetchone.return_value = {"schema_ready": True}
        app.dependency_overrides[get_db] = lambda: db

        response = client.get("/health/db")

        assert response.status_code == 200
        assert response.json()["connected"] is True
        assert response.json()["schema_ready"] is True

    def test_database_health_without_schema(self, client):
        db = MagicMock()
        db.cursor.return_value.__enter__.return_value.fetchone.return_value = {"schema_ready": False}
        app.dependency_overrides[get_db] = lambda: db

        response = client.get("/health/db")

        assert response.json()["connected"] is True
        assert response.json()["schema_ready"] is False

    def test_database_health_failure(self, client):
        db = Mock()
        db.cursor.side_effect = RuntimeError("connection refused")
        app.dependency_overrides[get_db] = lambda: db

        response = client.get("/health/db")

        assert response.json() == {
            "connected": False, "schema_ready": None, "latency_ms": None, "error": "connection refused",
        }
