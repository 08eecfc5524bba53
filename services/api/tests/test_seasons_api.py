"""HTTP tests for season and tournament administration."""

SCORES = [45000, 30000, 20000, 5000]


def _game(client, ruleset_id, tournament_id):
    return client.post("/api/v1/games", json={
        "game_date": "2026-03-01",
        "ruleset_id": ruleset_id,
        "tournament_id": tournament_id,
        "players": [{"player_number": i + 1, "game_score": s} for i, s in enumerate(SCORES)],
    })


def test_season_lifecycle(client):
    first = client.post("/api/v1/seasons", json={"name": "2026", "start_date": "2026-01-01", "is_active": True})
    assert first.status_code == 201
    season_id = first.json()["season"]["id"]
    second_id = client.post("/api/v1/seasons", json={"name": "2027", "start_date": "2027-01-01"}).json()["season"]["id"]

    assert client.post("/api/v1/seasons", json={"name": "2026", "start_date": "2026-01-01"}).status_code == 409

    preview = client.get(f"/api/v1/seasons/{season_id}/close").json()
    assert preview["confirmation"] == "CONFIRMAR"

    refused = client.post(f"/api/v1/seasons/{season_id}/close", json={"confirmation": "confirmar?"})
    assert refused.status_code == 400

    closed = client.post(
        f"/api/v1/seasons/{season_id}/close",
        json={"confirmation": "CONFIRMAR", "end_date": "2026-12-31", "next_season_id": second_id},
    ).json()
    assert closed["season"]["is_closed"] is True
    assert closed["next_season"]["id"] == second_id

    seasons = {s["name"]: s for s in client.get("/api/v1/seasons").json()["seasons"]}
    assert seasons["2027"]["is_active"] is True
    assert client.post(f"/api/v1/seasons/{season_id}/activate").status_code == 400
    assert client.get("/api/v1/seasons/999").status_code == 404


def test_tournament_finalize_over_http(client, rulesets, players, season):
    created = client.post(
        "/api/v1/tournaments", json={"name": "Spring Cup", "start_date": "2026-03-01", "end_date": "2026-03-01"}
    )
    assert created.status_code == 201
    tournament = created.json()["tournament"]
    assert tournament["season_id"] == season.id

    assert _game(client, rulesets["yonma"], tournament["id"]).status_code == 201

    listed = client.get("/api/v1/tournaments", params={"season_id": season.id}).json()["tournaments"]
    assert [t["name"] for t in listed] == ["Spring Cup"]

    wrong = client.post(f"/api/v1/tournaments/{tournament['id']}/finalize", json={"confirmation": "CONFIRMAR"})
    assert wrong.status_code == 400

    done = client.post(f"/api/v1/tournaments/{tournament['id']}/finalize", json={"confirmation": "FINALIZAR"})
    assert done.status_code == 200
    results = done.json()["tournament"]["results"]
    assert [(r["player_number"], r["position"]) for r in sorted(results, key=lambda r: r["position"])] == [
        (1, 1), (2, 2), (3, 3), (4, 4),
    ]

    assert _game(client, rulesets["yonma"], tournament["id"]).status_code == 400
