"""Tests for pollen parsing and the pollen route."""

import httpx
import pytest

from weatherproxy.app.services.pollen import parse_google_pollen, pollen_category

GOOGLE_URL = "https://pollen.googleapis.com/v1/forecast:lookup"
AIR_URL = "https://api.openweathermap.org/data/2.5/air_pollution"

GOOGLE_BODY = {
    "dailyInfo": [{
        "pollenTypeInfo": [
            {"code": "GRASS", "indexInfo": {"value": 3, "category": "Moderate"}},
            {"code": "WEED", "indexInfo": {"value": 0}},
        ],
        "plantInfo": [
            {"code": "OAK", "displayName": "Oak", "indexInfo": {"value": 4, "category": "Moderate"}},
            {"code": "BIRCH", "displayName": "Birch", "indexInfo": {"value": 1}},
            {"code": "RAGWEED", "displayName": "Ragweed", "indexInfo": {"value": 9}},
        ],
    }],
}


class TestPollenParsing:
    """Tests for Google Pollen response grouping."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(0, "No Data"), (1, "Low"), (2, "Low"), (5, "Moderate"), (8, "High"), (9, "Very High")],
    )
    def test_category(self, value, expected):
        assert pollen_category(value) == expected

    def test_groups_plants_and_falls_back_to_type_index(self):
        result = parse_google_pollen(GOOGLE_BODY)

        assert result == {
            "tree": {"Oak": "Moderate", "Birch": "Low"},
            "grass": {"Grass": "Moderate"},
            "weed": {"Ragweed": "Very High"},
            "source": "google",
        }

    def test_no_daily_info(self):
        assert parse_google_pollen({}) is None


class TestPollenRoute:
    """Tests for GET /api/weather/pollen."""

    PARAMS = {"lat": "40.7128", "lon": "-74.006"}

    def test_google_result_is_cached(self, client, respx_mock):
        route = respx_mock.get(GOOGLE_URL).mock(return_value=httpx.Response(200, json=GOOGLE_BODY))

        first = client.get("/api/weather/pollen", params=self.PARAMS)
        assert first.status_code == 200
        assert first.headers["X-Cache"] == "MISS"
        assert first.json()["source"] == "google"

        second = client.get("/api/weather/pollen", params=self.PARAMS)
        assert second.headers["X-Cache"] == "HIT"
        assert route.call_count == 1

        sent = route.calls.last.request
        assert sent.url.params["key"] == "test-pollen-key"
        assert sent.url.params["days"] == "1"

    def test_air_quality_fallback(self, client, respx_mock):
        respx_mock.get(GOOGLE_URL).mock(return_value=httpx.Response(403))
        respx_mock.get(AIR_URL).mock(
            return_value=httpx.Response(200, json={"list": [{"main": {"aqi": 1}}]})
        )

        body = client.get("/api/weather/pollen", params=self.PARAMS).json()
        assert body == {
            "tree": {"Tree": "Very High"},
            "grass": {"Grass": "High"},
            "weed": {"Weed": "High"},
            "source": "openweather_fallback",
        }

    def test_unavailable_is_not_cached(self, client, respx_mock):
        respx_mock.get(GOOGLE_URL).mock(side_effect=httpx.ConnectError("down"))
        air = respx_mock.get(AIR_URL).mock(return_value=httpx.Response(500))

        for _ in range(2):
            response = client.get("/api/weather/pollen", params=self.PARAMS)
            assert response.status_code == 200
            assert response.json()["source"] == "unavailable"
            assert response.headers["X-Cache"] == "MISS"

        assert air.call_count == 2

    def test_out_of_range(self, client):
        response = client.get("/api/weather/pollen", params={"lat": "91", "lon": "0"})
        assert response.status_code == 400
        assert response.json() == {"error": "Coordinates out of valid range"}

    def test_invalid_coordinates(self, client):
        response = client.get("/api/weather/pollen", params={"lat": "x", "lon": "0"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid coordinates provided"}
