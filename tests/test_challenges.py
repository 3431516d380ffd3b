"""Tests for the user challenge listing and claim endpoints."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from ampia.services.challenge_service import challenge_service
from main import app


def seed_user(store, user_id=1, points=0, badges=None):
    return store.seed(
        "Users",
        {"id": user_id, "points": points, "badges": badges or [], "role": "user"},
    )[0]


def seed_challenge(store, **overrides):
    challenge = {
        "title": "Premier ticket",
        "description": "Achète ton premier ticket",
        "type": "automatic",
        "status": "published",
        "reward_type": "points",
        "reward_payload": {"points": 50},
        "rule_type": "count_tickets",
        "rule_payload": {"target": 1},
        "created_at": "2024-05-01T10:00:00+00:00",
    }
    challenge.update(overrides)
    return store.seed("Challenges", challenge)[0]


def test_challenges_require_auth(client, api_base):
    r = client.get(f"{api_base}/me/challenges")
    assert r.status_code == 401
    assert r.json() == {"message": "Token manquant"}


def test_list_challenges_shape(client, api_base, store, auth_headers):
    seed_user(store, points=120, badges=["early"])
    seed_challenge(store)

    r = client.get(f"{api_base}/me/challenges", headers=auth_headers(1))
    assert r.status_code == 200
    data = r.json()

    assert data["user"] == {"level": 2, "points": 120, "badges": ["early"]}
    assert len(data["challenges"]) == 1
    item = data["challenges"][0]
    assert item["reward"] == {"type": "points", "amount": 50, "label": "+50 points"}
    assert item["progress"] == {"value": 0, "max": 1}
    assert item["status"] == "active"
    assert item["canClaim"] is False
    assert item["claimedAt"] is None
    assert item["badge"] is None


def test_list_only_published_and_eligible(client, api_base, store, auth_headers):
    seed_user(store, points=0)
    visible = seed_challenge(store, title="Visible")
    seed_challenge(store, title="Brouillon", status="draft")
    gated = seed_challenge(store, title="Niveau 3")
    store.seed("ChallengeTargets", {"challenge_id": gated["id"], "min_level": 3})

    r = client.get(f"{api_base}/me/challenges", headers=auth_headers(1))

    ids = [c["id"] for c in r.json()["challenges"]]
    assert ids == [str(visible["id"])]


def test_list_newest_first(client, api_base, store, auth_headers):
    seed_user(store)
    older = seed_challenge(store, created_at="2024-01-01T00:00:00+00:00")
    newer = seed_challenge(store, created_at="2024-06-01T00:00:00+00:00")

    r = client.get(f"{api_base}/me/challenges", headers=auth_headers(1))

    ids = [c["id"] for c in r.json()["challenges"]]
    assert ids == [str(newer["id"]), str(older["id"])]


def test_manual_challenge_listed_but_never_claimable(client, api_base, store, auth_headers):
    seed_user(store)
    seed_challenge(
        store,
        type="manual",
        reward_type="badge",
        reward_payload={"badge": "ambassadeur", "label": "Badge ambassadeur"},
    )

    item = client.get(f"{api_base}/me/challenges", headers=auth_headers(1)).json()[
        "challenges"
    ][0]

    assert item["progress"] == {"value": 0, "max": 1}
    assert item["status"] == "active"
    assert item["canClaim"] is False
    assert item["badge"] == "ambassadeur"
    assert item["reward"]["label"] == "Badge ambassadeur"


def test_ticket_challenge_end_to_end(client, api_base, store, auth_headers):
    seed_user(store, points=10)
    challenge = seed_challenge(store)
    headers = auth_headers(1)

    item = client.get(f"{api_base}/me/challenges", headers=headers).json()["challenges"][0]
    assert item["canClaim"] is False

    store.seed("Tickets", {"user_id": 1, "event_id": 3})

    item = client.get(f"{api_base}/me/challenges", headers=headers).json()["challenges"][0]
    assert item["status"] == "completed"
    assert item["canClaim"] is True
    assert item["progress"] == {"value": 1, "max": 1}

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"ok": True, "points": 60, "badges": [], "boostedEvent": None}
    assert store.rows("Users")[0]["points"] == 60

    claim = store.rows("UserChallenges")[0]
    assert claim["reward"] == {"type": "points", "payload": {"points": 50}}

    item = client.get(f"{api_base}/me/challenges", headers=headers).json()["challenges"][0]
    assert item["status"] == "claimed"
    assert item["canClaim"] is False
    assert item["claimedAt"] == claim["claimed_at"]

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=headers)
    assert r.status_code == 409
    assert r.json() == {"message": "Récompense déjà réclamée"}
    assert store.rows("Users")[0]["points"] == 60
    assert len(store.rows("UserChallenges")) == 1


def test_claim_points_from_amount(client, api_base, store, auth_headers):
    seed_user(store)
    challenge = seed_challenge(store, reward_payload={"amount": 25}, rule_payload={"target": 0})

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=auth_headers(1))

    assert r.status_code == 200
    assert r.json()["points"] == 25


def test_claim_badge_reward(client, api_base, store, auth_headers):
    seed_user(store, badges=["early"])
    store.seed("Favorites", {"user_id": 1, "event_id": 3})
    challenge = seed_challenge(
        store,
        reward_type="badge",
        reward_payload={"badge": "curieux"},
        rule_type="count_favorites",
    )

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=auth_headers(1))

    assert r.status_code == 200
    assert r.json()["badges"] == ["early", "curieux"]
    assert store.rows("Users")[0]["badges"] == ["early", "curieux"]


@pytest.mark.asyncio
async def test_concurrent_badge_claims_keep_both_badges(store):
    seed_user(store, badges=["early"])
    store.seed("Favorites", {"user_id": 1, "event_id": 3})
    first = seed_challenge(
        store, reward_type="badge", reward_payload={"badge": "curieux"}, rule_type="count_favorites"
    )
    second = seed_challenge(
        store, reward_type="badge", reward_payload={"badge": "fan"}, rule_type="count_favorites"
    )

    await asyncio.gather(
        challenge_service.claim_challenge(1, str(first["id"])),
        challenge_service.claim_challenge(1, str(second["id"])),
    )

    assert sorted(store.rows("Users")[0]["badges"]) == ["curieux", "early", "fan"]
    assert len(store.rows("UserChallenges")) == 2


def test_claim_concurrent_duplicate_is_conflict(
    client, api_base, store, auth_headers, monkeypatch
):
    seed_user(store)
    store.seed("Tickets", {"user_id": 1})
    challenge = seed_challenge(store)
    original_insert = store.insert

    def racing_insert(table, row):
        if table == "UserChallenges":
            # another request for the same claim lands first
            original_insert(table, row)
        return original_insert(table, row)

    monkeypatch.setattr(store, "insert", racing_insert)

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=auth_headers(1))

    assert r.status_code == 409
    assert store.rows("Users")[0]["points"] == 0


def test_claim_manual_challenge_rejected(client, api_base, store, auth_headers):
    seed_user(store)
    store.seed("Tickets", {"user_id": 1})
    challenge = seed_challenge(store, type="manual")

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=auth_headers(1))

    assert r.status_code == 400
    assert r.json() == {"message": "Ce défi ne peut pas être réclamé automatiquement"}
    assert store.rows("UserChallenges") == []


def test_claim_incomplete_challenge(client, api_base, store, auth_headers):
    seed_user(store)
    challenge = seed_challenge(store, rule_payload={"target": 3})

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=auth_headers(1))

    assert r.status_code == 400
    assert r.json() == {"message": "Défi pas encore complété"}


def test_claim_unknown_or_unpublished(client, api_base, store, auth_headers):
    seed_user(store)
    draft = seed_challenge(store, status="draft")

    for challenge_id in (draft["id"], 999):
        r = client.post(f"{api_base}/me/challenges/{challenge_id}/claim", headers=auth_headers(1))
        assert r.status_code == 404
        assert r.json() == {"message": "Défi introuvable"}


def test_claim_ineligible(client, api_base, store, auth_headers):
    seed_user(store, points=0)
    store.seed("Tickets", {"user_id": 1})
    challenge = seed_challenge(store)
    store.seed("ChallengeTargets", {"challenge_id": challenge["id"], "required_badge": "vip"})

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=auth_headers(1))

    assert r.status_code == 403
    assert r.json() == {"message": "Défi non disponible pour cet utilisateur"}


def test_boost_without_event_id_and_no_events(client, api_base, store, auth_headers):
    seed_user(store)
    store.seed("Tickets", {"user_id": 1})
    challenge = seed_challenge(
        store, reward_type="boost_score", reward_payload={"boost_score": 10}
    )

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=auth_headers(1))

    assert r.status_code == 404
    assert r.json() == {"message": "Aucun événement à booster"}
    assert store.rows("UserChallenges") == []


def test_boost_event_owned_by_someone_else(client, api_base, store, auth_headers):
    seed_user(store)
    store.seed("Tickets", {"user_id": 1})
    event = store.seed("Events", {"organizer_id": 2, "boost_score": 0})[0]
    challenge = seed_challenge(
        store,
        reward_type="boost_score",
        reward_payload={"boost_score": 10, "event_id": event["id"]},
    )

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=auth_headers(1))

    assert r.status_code == 403
    assert r.json() == {"message": "Tu ne peux booster que tes événements"}
    assert store.rows("Events")[0]["boost_score"] == 0


def test_boost_missing_event(client, api_base, store, auth_headers):
    seed_user(store)
    store.seed("Tickets", {"user_id": 1})
    challenge = seed_challenge(
        store,
        reward_type="boost_score",
        reward_payload={"boost_score": 10, "event_id": 404},
    )

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=auth_headers(1))

    assert r.status_code == 404
    assert r.json() == {"message": "Événement introuvable pour le boost"}


def test_boost_latest_owned_event(client, api_base, store, auth_headers):
    seed_user(store)
    store.seed("Tickets", {"user_id": 1})
    store.seed(
        "Events",
        {"organizer_id": 1, "boost_score": 1, "created_at": "2024-01-01T00:00:00+00:00"},
        {"organizer_id": 1, "boost_score": 5, "created_at": "2024-03-01T00:00:00+00:00"},
    )
    challenge = seed_challenge(
        store, reward_type="boost_score", reward_payload={"amount": 10}
    )

    r = client.post(f"{api_base}/me/challenges/{challenge['id']}/claim", headers=auth_headers(1))

    assert r.status_code == 200
    boosted = r.json()["boostedEvent"]
    assert boosted["id"] == 2
    assert boosted["boost_score"] == 15
    assert [e["boost_score"] for e in store.rows("Events")] == [1, 15]


def test_failed_reward_write_releases_claim(store, auth_headers):
    seed_user(store)
    store.seed("Tickets", {"user_id": 1})
    challenge = seed_challenge(store)
    store.fail_increment = True

    with TestClient(app, raise_server_exceptions=False) as client:
        r = client.post(
            f"/api/me/challenges/{challenge['id']}/claim", headers=auth_headers(1)
        )

    assert r.status_code == 500
    assert r.json() == {"message": "Erreur serveur"}
    assert store.rows("UserChallenges") == []
    assert store.rows("Users")[0]["points"] == 0

    writes = [call for call in store.calls if call[0] != "select" and call[0] != "count"]
    assert writes == [
        ("insert", "UserChallenges"),
        ("increment", "Users"),
        ("delete", "UserChallenges"),
    ]
