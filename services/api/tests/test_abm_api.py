"""HTTP tests for reference data CRUD (countries, locations, uma, rulesets)."""

import pytest


def test_country_crud(client):
    created = client.post("/api/v1/countries", json={"iso_code": "ar", "full_name": "Argentina", "nationality": "Argentine"})
    assert created.status_code == 201
    item = created.json()["item"]
    assert item["iso_code"] == "AR"
    assert "created_ip" not in item

    updated = client.put(
        f"/api/v1/countries/{item['id']}",
        json={"iso_code": "AR", "full_name": "República Argentina", "nationality": "Argentine", "version": 0},
    )
    assert updated.json()["item"]["version"] == 1

    dup = client.post("/api/v1/countries", json={"iso_code": "AR", "full_name": "x", "nationality": "x"})
    assert dup.status_code == 409


@pytest.mark.parametrize(
    "path, body",
    [
        ("locations", {"name": "Club Haku", "city": "Buenos Aires"}),
        ("uma", {"name": "Sanma 20", "first_place": 20, "second_place": 0, "third_place": -20}),
    ],
)
def test_soft_delete_and_restore(client, path, body):
    row_id = client.post(f"/api/v1/{path}", json=body).json()["item"]["id"]

    assert client.delete(f"/api/v1/{path}/{row_id}", params={"version": 0}).status_code == 200
    assert client.get(f"/api/v1/{path}/{row_id}").status_code == 404
    assert client.get(f"/api/v1/{path}").json()["items"] == []
    hidden = client.get(f"/api/v1/{path}", params={"include_deleted": True}).json()["items"]
    assert [i["id"] for i in hidden] == [row_id]

    restored = client.post(f"/api/v1/{path}/{row_id}/restore").json()["item"]
    assert restored["deleted"] is False
    assert restored["version"] == 2
    assert client.post(f"/api/v1/{path}/{row_id}/restore").status_code == 400


def test_stale_delete_is_rejected(client):
    row_id = client.post("/api/v1/locations", json={"name": "Club Haku"}).json()["item"]["id"]
    client.put(f"/api/v1/locations/{row_id}", json={"name": "Club Haku", "city": "Rosario"})
    assert client.delete(f"/api/v1/locations/{row_id}", params={"version": 0}).status_code == 409


def test_ruleset_requires_existing_uma(client):
    body = {"name": "WRC", "uma_id": 99, "oka": 20, "in_points": 25000, "out_points": 30000}
    assert client.post("/api/v1/rulesets", json=body).status_code == 400

    uma_id = client.post(
        "/api/v1/uma", json={"name": "WRC", "first_place": 15, "second_place": 5, "third_place": -5, "fourth_place": -15}
    ).json()["item"]["id"]
    created = client.post("/api/v1/rulesets", json={**body, "uma_id": uma_id})
    assert created.status_code == 201
    assert created.json()["item"]["sanma"] is False


def test_ruleset_rejects_non_positive_points(client):
    body = {"name": "Bad", "uma_id": 1, "in_points": 0, "out_points": 30000}
    assert client.post("/api/v1/rulesets", json=body).status_code == 422


def test_audit_actor_header(client):
    item = client.post("/api/v1/locations", json={"name": "Club Haku"}, headers={"X-Actor": "admin"}).json()["item"]
    assert item["created_by"] == "admin"
