"""Tests for the REST API: lifecycle routes, error mapping, idempotency, audit export."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from conftest import AGENT, PAYER, PROOF_HASH, STRANGER, TASK_ID
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from wap3_escrow.api.middleware import status_code_for
from wap3_escrow.config import get_settings
from wap3_escrow.domain.exceptions import (
    ConsistencyViolationError,
    EscrowError,
    EscrowUnknownError,
)
from wap3_escrow.infrastructure import redis_client
from wap3_escrow.main import create_app
from wap3_escrow.services.escrow_client import EscrowClient

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


class FakeRedis:
    """The subset of redis.asyncio.Redis the app uses."""

    def __init__(self) -> None:
        self.store: dict[str, Any] = {}

    async def set(self, key: str, value: Any, ex: int | None = None, nx: bool = False) -> bool | None:
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.store.clear()


class UnreachableRedis(FakeRedis):
    async def set(self, key: str, value: Any, ex: int | None = None, nx: bool = False) -> bool | None:
        raise RedisConnectionError("Error 111 connecting to 127.0.0.1:6379")


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[TestClient]:
    monkeypatch.setenv("APP_ENV", "development")
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("LEDGER_BACKEND", "memory")
    monkeypatch.setenv("REDIS_URL", "redis://127.0.0.1:1/0")
    monkeypatch.setenv("AUDIT_OUTPUT_DIR", str(tmp_path))
    get_settings.cache_clear()

    with TestClient(create_app()) as test_client:
        redis_client.set_redis(FakeRedis())
        yield test_client

    get_settings.cache_clear()


def _create(client: TestClient, **overrides: Any):
    body = {"caller": PAYER, "agent": AGENT, "task_id": TASK_ID, "amount_eth": "0.05"}
    body.update(overrides)
    return client.post("/api/v1/escrow", json=body)


def _completed(client: TestClient) -> int:
    escrow_id = _create(client).json()["escrow_id"]
    resp = client.post(
        f"/api/v1/escrow/{escrow_id}/proof", json={"caller": AGENT, "proof_hash": PROOF_HASH}
    )
    assert resp.status_code == 200
    return escrow_id


class TestHealth:
    def test_health_ok(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data == {
            "status": "ok",
            "version": "0.1.0",
            "ledger": "healthy",
            "database": "healthy",
            "redis": "healthy",
        }

    def test_request_id_is_echoed(self, client: TestClient) -> None:
        resp = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"


class TestLifecycleRoutes:
    def test_create_returns_pending(self, client: TestClient) -> None:
        resp = _create(client)
        assert resp.status_code == 201
        data = resp.json()
        assert data["escrow_id"] == 0
        assert data["status"] == "PENDING"
        assert data["tx_hash"].startswith("0x")

    def test_get_escrow(self, client: TestClient) -> None:
        escrow_id = _create(client).json()["escrow_id"]

        data = client.get(f"/api/v1/escrow/{escrow_id}").json()
        assert data["amount_wei"] == 5 * 10**16
        assert data["amount_eth"] == "0.05"
        assert data["label"] == "pending"
        assert set(data["allowed_events"]) == {"submit_proof", "refund"}

    def test_full_settlement(self, client: TestClient) -> None:
        escrow_id = _completed(client)

        resp = client.post(f"/api/v1/escrow/{escrow_id}/release", json={"caller": PAYER})
        assert resp.status_code == 200
        assert resp.json()["status"] == "RELEASED"

        data = client.get(f"/api/v1/escrow/{escrow_id}").json()
        assert data["label"] == "settled"
        assert data["proof_hash"] == PROOF_HASH
        assert data["allowed_events"] == []

    def test_refund(self, client: TestClient) -> None:
        escrow_id = _create(client).json()["escrow_id"]
        resp = client.post(f"/api/v1/escrow/{escrow_id}/refund", json={"caller": PAYER})
        assert resp.status_code == 200
        assert resp.json()["status"] == "REFUNDED"


class TestErrorMapping:
    """Domain errors come back as structured JSON with a matching status code."""

    def test_unknown_escrow_is_404(self, client: TestClient) -> None:
        resp = client.get("/api/v1/escrow/7")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NOT_FOUND"

    def test_release_before_proof_is_409(self, client: TestClient) -> None:
        escrow_id = _create(client).json()["escrow_id"]
        resp = client.post(f"/api/v1/escrow/{escrow_id}/release", json={"caller": PAYER})
        assert resp.status_code == 409
        assert resp.json()["error"] == "INVALID_STATE_TRANSITION"

    def test_refund_after_proof_is_409(self, client: TestClient) -> None:
        escrow_id = _completed(client)
        resp = client.post(f"/api/v1/escrow/{escrow_id}/refund", json={"caller": PAYER})
        assert resp.status_code == 409

    def test_wrong_caller_is_403(self, client: TestClient) -> None:
        escrow_id = _create(client).json()["escrow_id"]
        resp = client.post(
            f"/api/v1/escrow/{escrow_id}/proof", json={"caller": STRANGER, "proof_hash": PROOF_HASH}
        )
        assert resp.status_code == 403
        body = resp.json()
        assert body["error"] == "UNAUTHORIZED"
        assert body["escrow_id"] == escrow_id

    def test_zero_agent_is_422(self, client: TestClient) -> None:
        resp = _create(client, agent="0x" + "0" * 40)
        assert resp.status_code == 422
        assert resp.json()["error"] == "INVALID_INPUT"

    def test_malformed_body_is_422(self, client: TestClient) -> None:
        resp = _create(client, amount_eth="-1")
        assert resp.status_code == 422

    def test_unaffordable_amount_is_402(self, client: TestClient) -> None:
        resp = _create(client, amount_eth="1000")
        assert resp.status_code == 402
        assert resp.json()["error"] == "TRANSFER_FAILED"


class TestIdempotency:
    def test_duplicate_key_is_409(self, client: TestClient) -> None:
        first = _create(client, idempotency_key="order-1")
        second = _create(client, idempotency_key="order-1")

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["error"] == "DUPLICATE_OPERATION"
        assert client.get("/api/v1/escrow/1").status_code == 404

    def test_rejected_create_frees_key(self, client: TestClient) -> None:
        rejected = _create(client, agent="0x" + "0" * 40, idempotency_key="order-2")
        retried = _create(client, idempotency_key="order-2")

        assert rejected.status_code == 422
        assert retried.status_code == 201

    def test_missing_store_is_503(self, client: TestClient) -> None:
        redis_client.set_redis(None)
        resp = _create(client, idempotency_key="order-3")
        assert resp.status_code == 503

    def test_unreachable_store_is_503(self, client: TestClient) -> None:
        redis_client.set_redis(UnreachableRedis())
        resp = _create(client, idempotency_key="order-4")
        assert resp.status_code == 503

    def test_out_of_range_amount_claims_no_key(self, client: TestClient) -> None:
        rejected = _create(client, amount_eth="1e80", idempotency_key="order-5")
        assert rejected.status_code == 422
        assert rejected.json()["error"] == "INVALID_INPUT"
        assert "idempotency:create:order-5" not in redis_client.get_redis().store

    def test_unexpected_failure_frees_key(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def crash(*args: Any, **kwargs: Any) -> None:
            raise RuntimeError("connection reset mid-call")

        monkeypatch.setattr(EscrowClient, "create", crash)
        resp = _create(client, idempotency_key="order-6")

        assert resp.status_code == 500
        assert resp.json()["error"] == "INTERNAL_ERROR"
        assert "idempotency:create:order-6" not in redis_client.get_redis().store


class TestAuditExport:
    def test_export_settled_escrow(self, client: TestClient, intent, trigger, tmp_path: Path) -> None:
        escrow_id = _completed(client)
        client.post(f"/api/v1/escrow/{escrow_id}/release", json={"caller": PAYER})

        resp = client.post(
            f"/api/v1/escrow/{escrow_id}/audit",
            json={"intent": intent.model_dump(mode="json"), "trigger": trigger.model_dump(mode="json")},
        )

        assert resp.status_code == 201
        data = resp.json()
        record = data["record"]
        assert record["escrow"]["status"] == "settled"
        assert record["intent"]["intent_id"] == intent.intent_id
        assert record["tx"]["settle_tx"] is not None
        assert data["path"] is not None
        assert (tmp_path / f"audit_{escrow_id}_{data['record_id']}.json").exists()

    def test_export_unknown_escrow_is_404(self, client: TestClient, intent, trigger) -> None:
        resp = client.post(
            "/api/v1/escrow/3/audit",
            json={"intent": intent.model_dump(mode="json"), "trigger": trigger.model_dump(mode="json")},
        )
        assert resp.status_code == 404
        assert resp.json()["error"] == "ESCROW_UNKNOWN"


class TestStatusCodeFor:
    def test_unknown_escrow_maps_like_not_found(self) -> None:
        assert status_code_for(EscrowUnknownError(9)) == 404

    def test_ledger_rejection_falls_back_to_400(self) -> None:
        exc = EscrowError("reverted: custom", code="LEDGER_REJECTED", escrow_id=1)
        assert status_code_for(exc) == 400

    def test_consistency_violation_is_500(self) -> None:
        assert status_code_for(ConsistencyViolationError("two release events", escrow_id=2)) == 500
