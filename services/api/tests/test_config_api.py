"""HTTP tests for the point table administration endpoints."""

from sqlalchemy.orm.exc import StaleDataError

from league_api.config_cache import config_cache
from league_api.services import configs as config_service

RATE = {
    "name": "Standard Yonma",
    "sanma": False,
    "first_place": 30,
    "second_place": 10,
    "third_place": -10,
    "fourth_place": -30,
}


def _rate_row(client, name="Standard Yonma"):
    rows = client.get("/api/v1/config/rate", params={"sanma": False}).json()["configs"]
    return next(r for r in rows if r["name"] == name)


def test_list_tables(client):
    dan = client.get("/api/v1/config/dan", params={"sanma": False}).json()["configs"]
    assert dan[0]["rank"] == "新人"
    assert [r["min_points"] for r in dan] == sorted(r["min_points"] for r in dan)
    season = client.get("/api/v1/config/season").json()["configs"]
    assert {r["name"] for r in season} == {"Default Yonma", "Default Sanma"}


def test_update_refreshes_cache(client):
    row = _rate_row(client)
    resp = client.put(f"/api/v1/config/rate/{row['id']}", json={**RATE, "first_place": 45, "version": row["version"]})
    assert resp.status_code == 200
    assert resp.json()["config"]["version"] == row["version"] + 1
    assert config_cache.get_default_rate_config(False).first_place == 45


def test_stale_update_is_rejected(client):
    row = _rate_row(client)
    client.put(f"/api/v1/config/rate/{row['id']}", json={**RATE, "first_place": 35, "version": row["version"]})
    stale = client.put(f"/api/v1/config/rate/{row['id']}", json={**RATE, "first_place": 50, "version": row["version"]})
    assert stale.status_code == 409
    assert config_cache.get_default_rate_config(False).first_place == 35


def test_create_duplicate_and_invalid_rows(client):
    assert client.post("/api/v1/config/rate", json=RATE).status_code == 409

    missing_fourth = {**RATE, "name": "Broken", "fourth_place": None}
    resp = client.post("/api/v1/config/rate", json=missing_fourth)
    assert resp.status_code == 400
    assert "fourth_place is required for 4-player tables" in resp.json()["details"]

    dan = {
        "rank": "Test", "min_points": 100, "max_points": 50,
        "first_place": 60, "second_place": 30, "third_place": 0, "fourth_place": 0,
    }
    assert client.post("/api/v1/config/dan", json=dan).status_code == 400


def test_season_config_for_a_season(client, season):
    body = {
        "name": "Double", "sanma": False, "season_id": season.id,
        "first_place": 30, "second_place": 10, "third_place": -10, "fourth_place": -30,
    }
    resp = client.post("/api/v1/config/season", json=body)
    assert resp.status_code == 201
    assert config_cache.get_season_config_for_season(False, season.id).name == "Double"


def test_delete_and_restore(client):
    row = _rate_row(client, "Standard Yonma")
    deleted = client.delete(f"/api/v1/config/rate/{row['id']}", params={"version": row["version"]})
    assert deleted.status_code == 200
    assert deleted.json()["config"]["deleted"] is True
    assert config_cache.get_default_rate_config(False) is None

    listed = client.get("/api/v1/config/rate", params={"include_deleted": True}).json()["configs"]
    assert len(listed) == 2

    restored = client.post(f"/api/v1/config/rate/{row['id']}/restore")
    assert restored.status_code == 200
    assert config_cache.get_default_rate_config(False).name == "Standard Yonma"


def test_create_revives_deleted_row(client):
    row = _rate_row(client)
    client.delete(f"/api/v1/config/rate/{row['id']}")
    revived = client.post("/api/v1/config/rate", json={**RATE, "first_place": 40})
    assert revived.status_code == 201
    assert revived.json()["config"]["id"] == row["id"]
    assert revived.json()["config"]["first_place"] == 40


def test_unknown_table(client):
    assert client.delete("/api/v1/config/bonus/1").status_code == 404


def test_cache_endpoints(client):
    refreshed = client.post("/api/v1/config/cache/refresh").json()
    assert refreshed["cache"]["initialized"] is True
    status = client.get("/api/v1/config/status").json()
    assert status["cache"]["rate_configs"] == 2
    snapshot = client.get("/api/v1/config/cache").json()
    assert set(snapshot) == {"ok", "dan", "rate", "season"}


def test_dan_rank_lookup(client):
    data = client.get("/api/v1/config/dan/rank", params={"points": 120}).json()
    assert data["rank"] == "8級"
    assert data["next"] == {"next_rank": "7級", "missing": 80.0}
    assert data["config"]["min_points"] == 100


def test_update_losing_a_race_is_retried(client, monkeypatch):
    update_row = config_service.update_row
    calls = []

    def racing_update(db, table, row_id, values):
        calls.append(values.get("version"))
        if len(calls) == 1:
            raise StaleDataError("UPDATE statement on table 'rate_config' expected to update 1 row(s); 0 were matched.")
        return update_row(db, table, row_id, values)

    monkeypatch.setattr(config_service, "update_row", racing_update)
    row = _rate_row(client)
    resp = client.put(f"/api/v1/config/rate/{row['id']}", json={**RATE, "first_place": 40, "version": row["version"]})

    assert resp.status_code == 200
    assert calls == [row["version"], row["version"]]
    assert resp.json()["config"]["version"] == row["version"] + 1
    assert config_cache.get_default_rate_config(False).first_place == 40


def test_stale_client_version_is_not_retried(client, monkeypatch):
    update_row = config_service.update_row
    calls = []

    def counted_update(db, table, row_id, values):
        calls.append(row_id)
        return update_row(db, table, row_id, values)

    row = _rate_row(client)
    client.put(f"/api/v1/config/rate/{row['id']}", json={**RATE, "first_place": 35, "version": row["version"]})
    monkeypatch.setattr(config_service, "update_row", counted_update)
    stale = client.put(f"/api/v1/config/rate/{row['id']}", json={**RATE, "first_place": 50, "version": row["version"]})

    assert stale.status_code == 409
    assert calls == [row["id"]]


def test_race_lost_on_every_attempt_is_a_conflict(client, monkeypatch):
    def always_stale(db, table, row_id, values):
        raise StaleDataError("UPDATE statement on table 'rate_config' expected to update 1 row(s); 0 were matched.")

    monkeypatch.setattr(config_service, "update_row", always_stale)
    row = _rate_row(client)
    resp = client.put(f"/api/v1/config/rate/{row['id']}", json={**RATE, "version": row["version"]})

    assert resp.status_code == 409
    assert resp.json()["ok"] is False
