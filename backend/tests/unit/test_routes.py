"""Tests for the HTTP surface, driven through FastAPI's TestClient."""

from fastapi.testclient import TestClient

from fee_engine.config import Settings
from fee_engine.main import create_app
from fee_engine.services import StaticLocationPlatform

from tests.unit.fakes import FakeFeeCalculator


class TestRoutes:
    """End-to-end tests for fee, location and lifecycle endpoints."""

    def setup_method(self) -> None:
        self.calculator = FakeFeeCalculator(default=4.5)
        self.app = create_app(
            settings=Settings(location_debounce_seconds=0.01),
            calculator=self.calculator,
            platform=StaticLocationPlatform(),
        )

    def test_health(self) -> None:
        with TestClient(self.app) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_fee_lookup_is_cached(self) -> None:
        with TestClient(self.app) as client:
            params = {"base_fee": 2.99, "lat": 36.75, "lng": 3.05}
            first = client.get("/api/delivery-fee/r1", params=params).json()
            second = client.get("/api/delivery-fee/r1", params=params).json()
            stats = client.get("/api/delivery-fee/stats").json()

        assert first["success"] is True
        assert first["fee"] == 4.5
        assert second["fee"] == 4.5
        assert self.calculator.call_count("r1") == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["current_fingerprint"] == "36.75_3.05"

    def test_fee_without_location_uses_base_fee(self) -> None:
        with TestClient(self.app) as client:
            body = client.get("/api/delivery-fee/r1", params={"base_fee": 2.99}).json()
        assert body["success"] is True
        assert body["fee"] == 2.99
        assert self.calculator.calls == []

    def test_failed_computation_reports_base_fee(self) -> None:
        self.calculator.failures.add("r1")
        with TestClient(self.app) as client:
            body = client.get(
                "/api/delivery-fee/r1", params={"base_fee": 2.99, "lat": 36.75, "lng": 3.05}
            ).json()
        assert body["fee"] == 2.99
        assert body["failed"] is True

    def test_precalculate(self) -> None:
        self.calculator.failures.add("r2")
        payload = {
            "restaurants": [
                {"id": "r1", "base_delivery_fee": 2.99},
                {"id": "r2", "base_delivery_fee": 1.5},
            ],
            "lat": 36.75,
            "lng": 3.05,
        }
        with TestClient(self.app) as client:
            body = client.post("/api/delivery-fee/precalculate", json=payload).json()

        assert body["success"] is True
        assert body["fees"] == {"r1": 4.5, "r2": 1.5}
        assert body["failed"] == ["r2"]
        assert body["stats"]["total_cached"] == 2

    def test_invalidate_and_clear(self) -> None:
        params = {"base_fee": 2.99, "lat": 36.75, "lng": 3.05}
        with TestClient(self.app) as client:
            client.get("/api/delivery-fee/r1", params=params)
            client.get("/api/delivery-fee/r2", params=params)

            removed_one = client.delete("/api/delivery-fee/r1").json()
            cleared = client.delete("/api/delivery-fee").json()

        assert removed_one["removed"] == 1
        assert removed_one["stats"]["total_cached"] == 1
        assert cleared["removed"] == 1
        assert cleared["stats"]["total_cached"] == 0

    def test_cleanup_and_optimize(self) -> None:
        params = {"base_fee": 2.99, "lat": 36.75, "lng": 3.05}
        with TestClient(self.app) as client:
            client.get("/api/delivery-fee/r1", params=params)
            client.get("/api/delivery-fee/r2", params=params)

            cleanup = client.post("/api/delivery-fee/cleanup").json()
            optimized = client.post("/api/delivery-fee/optimize", params={"max_size": 1}).json()

        assert cleanup["removed"] == 0
        assert optimized["removed"] == 1
        assert optimized["stats"]["total_cached"] == 1

    def test_location_unavailable_until_set(self) -> None:
        with TestClient(self.app) as client:
            missing = client.get("/api/location").json()
            updated = client.put("/api/location", json={"lat": 36.75, "lng": 3.05}).json()
            current = client.get("/api/location").json()

        assert missing["success"] is False
        assert missing["error"]["code"] == "LOCATION_UNAVAILABLE"
        assert updated["success"] is True
        assert current["success"] is True
        assert current["location"]["lat"] == 36.75

    def test_invalid_location_is_rejected(self) -> None:
        with TestClient(self.app) as client:
            response = client.put("/api/location", json={"lat": 120.0, "lng": 3.05})
        assert response.status_code == 422

    def test_invalid_query_coordinates_are_rejected(self) -> None:
        with TestClient(self.app) as client:
            response = client.get(
                "/api/delivery-fee/r1", params={"base_fee": 2.99, "lat": 91, "lng": 3.05}
            )
        assert response.status_code == 422

    def test_lifecycle_transitions(self) -> None:
        with TestClient(self.app) as client:
            paused = client.post("/api/lifecycle/paused").json()
            resumed = client.post("/api/lifecycle/resumed").json()
            unknown = client.post("/api/lifecycle/detached")

        assert paused["refresh_running"] is False
        assert resumed["success"] is True
        assert resumed["refresh_running"] is True
        assert unknown.status_code == 422
