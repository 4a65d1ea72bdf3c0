import pytest

from placefinder.core.auth import TokenGate
from placefinder.core.errors import ConnectionFailure, DecodeFailure
from placefinder.core.query import PlaceQueryService
from placefinder.jobs import server
from placefinder.jobs.bulk_load import BulkLoader

from conftest import FakeStore


@pytest.fixture
def gate():
    return TokenGate("test-secret", ttl_seconds=60)


@pytest.fixture
def client(store, gate, two_cafes):
    BulkLoader(store, workers=1).run(two_cafes)
    app = server.create_app(PlaceQueryService(store), gate)
    return app.test_client()


def _auth(gate):
    return {"Authorization": f"Bearer {gate.issue_token()}"}


def test_health_endpoint(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_places_page(client):
    response = client.get("/api/places?page=0")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["name"] == "Places"
    assert payload["total"] == 2
    assert payload["prev_page"] == -1
    assert payload["next_page"] == 1
    assert payload["last_page"] == 0
    assert {place["id"] for place in payload["places"]} == {1, 2}
    assert payload["places"][0]["location"] == {"lat": 40.7, "lon": -73.9}


@pytest.mark.parametrize("page", ["-1", "abc", "1.5"])
def test_places_rejects_invalid_page(client, page):
    response = client.get(f"/api/places?page={page}")
    assert response.status_code == 400
    assert "Invalid 'page' value" in response.get_json()["error"]


def test_places_past_the_end_is_empty(client):
    response = client.get("/api/places?page=50")
    assert response.status_code == 200
    assert response.get_json()["places"] == []


def test_recommend_requires_authorization_header(client):
    response = client.get("/api/recommend?lat=40.71&lon=-73.91")
    assert response.status_code == 401


def test_recommend_rejects_bad_token(client):
    response = client.get("/api/recommend?lat=40.71&lon=-73.91", headers={"Authorization": "Bearer forged"})
    assert response.status_code == 401


def test_recommend_returns_nearest_places(client, gate):
    response = client.get("/api/recommend?lat=40.71&lon=-73.91", headers=_auth(gate))

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["name"] == "Recommendation"
    assert [place["id"] for place in payload["places"]] == [1, 2]
    assert payload["places"][0]["distance_km"] < payload["places"][1]["distance_km"]


@pytest.mark.parametrize("query", ["lat=abc&lon=1", "lat=200&lon=0", "lon=1"])
def test_recommend_rejects_bad_coordinates(client, gate, query):
    response = client.get(f"/api/recommend?{query}", headers=_auth(gate))
    assert response.status_code == 400


def test_get_token_issues_usable_token(client, gate):
    token = client.get("/api/get_token").get_json()["token"]
    assert gate.authorize(token) is True


@pytest.mark.parametrize("error, status", [(ConnectionFailure("down"), 502), (DecodeFailure("garbled"), 500)])
def test_store_failures_map_to_server_errors(gate, error, status):
    class BrokenStore(FakeStore):
        def search(self, offset, limit, sort=None):
            raise error

    app = server.create_app(PlaceQueryService(BrokenStore()), gate)
    response = app.test_client().get("/api/places?page=0")

    assert response.status_code == status
    assert "error" in response.get_json()
