from conftest import (
    ADMIN_TOKEN,
    COOP_ID,
    MEMBER_TOKEN,
    PROPOSAL_TEXT,
    PROPOSER_TOKEN,
    auth,
    seed_config,
)


def _submit(api):
    return api.post(
        "/proposals",
        json={"coop_id": COOP_ID, "text": PROPOSAL_TEXT},
        headers=auth(PROPOSER_TOKEN),
    ).json()


def _assign(api, token=ADMIN_TOKEN, wallet="0xMember", domain="finance"):
    return api.post(
        "/experts/assignments",
        json={"wallet_address": wallet, "domain": domain},
        headers=auth(token),
    )


def test_assign_and_revoke_expert(api):
    assert _assign(api, token=MEMBER_TOKEN).status_code == 403

    created = _assign(api)
    assert created.status_code == 201
    assert created.json()["wallet_address"] == "0xmember"

    mine = api.get("/experts/me", headers=auth(MEMBER_TOKEN)).json()
    assert [a["domain"] for a in mine] == ["finance"]

    revoked = api.delete(
        "/experts/assignments",
        params={"wallet_address": "0xmember", "domain": "finance"},
        headers=auth(ADMIN_TOKEN),
    )
    assert revoked.status_code == 200
    assert revoked.json()["is_active"] is False
    assert api.get("/experts/assignments").json() == []


def test_expert_override_flow(api, backend):
    seed_config(backend)
    _assign(api)
    proposal = _submit(api)

    queue = api.get("/experts/queue", headers=auth(MEMBER_TOKEN)).json()
    assert [item["proposal"]["id"] for item in queue] == [proposal["id"]]

    url = f"/proposals/{proposal['id']}/revisions/1/goal-scores/income_stability"
    response = api.put(
        url,
        json={"score": 0.4, "reason": "Revenue projections are thin"},
        headers=auth(MEMBER_TOKEN),
    )

    assert response.status_code == 200
    score = response.json()
    assert score["expert_score"] == 0.4
    assert score["final_score"] == 0.4

    adjustments = api.get(f"/goal-scores/{score['id']}/adjustments").json()
    assert len(adjustments) == 1
    assert adjustments[0]["to_score"] == 0.4

    scores = api.get(f"/proposals/{proposal['id']}/goal-scores").json()
    assert len(scores) == 4
    assert api.get("/experts/queue", headers=auth(MEMBER_TOKEN)).json() == []


def test_expert_override_errors(api, backend):
    seed_config(backend)
    _assign(api)
    proposal = _submit(api)
    base = f"/proposals/{proposal['id']}/revisions/1/goal-scores"
    body = {"score": 0.4, "reason": "Outside my expertise"}

    outside = api.put(f"{base}/export_expansion", json=body, headers=auth(MEMBER_TOKEN))
    assert outside.status_code == 403

    unassigned = api.put(f"{base}/income_stability", json=body, headers=auth(PROPOSER_TOKEN))
    assert unassigned.status_code == 403

    out_of_range = api.put(
        f"{base}/income_stability",
        json={"score": 1.5, "reason": "Too generous"},
        headers=auth(MEMBER_TOKEN),
    )
    assert out_of_range.status_code == 422

    missing = api.put(f"{base}/not_a_goal", json=body, headers=auth(MEMBER_TOKEN))
    assert missing.status_code == 404
