from uuid import uuid4

from conftest import (
    ADMIN_TOKEN,
    COOP_ID,
    MEMBER_TOKEN,
    PROPOSAL_TEXT,
    PROPOSER_TOKEN,
    auth,
    make_assessment,
    seed_config,
)


def _submit(api, token=PROPOSER_TOKEN, **body):
    payload = {"coop_id": COOP_ID, "text": PROPOSAL_TEXT, **body}
    return api.post("/proposals", json=payload, headers=auth(token))


def test_submit_requires_auth(api, backend):
    seed_config(backend)

    response = api.post("/proposals", json={"coop_id": COOP_ID, "text": PROPOSAL_TEXT})

    assert response.status_code == 401


def test_submit_and_read_back(api, backend):
    seed_config(backend)

    response = _submit(api, metadata={"title": "Member Solar"})

    assert response.status_code == 201
    proposal = response.json()
    assert proposal["status"] == "submitted"
    assert proposal["decision"] == "advance"
    assert proposal["title"] == "Member Solar"
    assert proposal["current_revision"] == 1

    fetched = api.get(f"/proposals/{proposal['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == proposal["id"]

    revisions = api.get(f"/proposals/{proposal['id']}/revisions").json()
    assert [r["revision_number"] for r in revisions] == [1]
    revision = api.get(f"/proposals/{proposal['id']}/revisions/1").json()
    assert revision["source"] == "submit"


def test_submit_without_config_is_not_found(api):
    response = _submit(api)

    assert response.status_code == 404
    assert response.json()["detail"]["message"]
    assert response.json()["detail"]["details"]["coop_id"] == COOP_ID


def test_submit_short_text_is_invalid(api, backend):
    seed_config(backend)

    response = _submit(api, text="short")

    assert response.status_code == 422


def test_upstream_failure_is_bad_gateway(api, backend, evaluator):
    seed_config(backend)
    evaluator.queue = [RuntimeError("model unavailable")]

    response = _submit(api)

    assert response.status_code == 502
    assert api.get("/proposals", params={"coop_id": COOP_ID}).json()["total"] == 0


def test_get_unknown_proposal(api):
    response = api.get(f"/proposals/{uuid4()}")

    assert response.status_code == 404


def test_list_proposals_paging(api, backend):
    seed_config(backend)
    for _ in range(3):
        _submit(api)
    _submit(api, token=MEMBER_TOKEN)

    page = api.get("/proposals", params={"coop_id": COOP_ID, "limit": 2}).json()
    assert page["total"] == 4
    assert len(page["items"]) == 2

    mine = api.get("/proposals", params={"proposer_wallet": "0xmember"}).json()
    assert mine["total"] == 1

    assert api.get("/proposals", params={"limit": 101}).status_code == 422


def test_withdraw_by_other_member_forbidden(api, backend):
    seed_config(backend)
    proposal = _submit(api).json()

    forbidden = api.post(f"/proposals/{proposal['id']}/withdraw", headers=auth(MEMBER_TOKEN))
    assert forbidden.status_code == 403

    withdrawn = api.post(f"/proposals/{proposal['id']}/withdraw", headers=auth(PROPOSER_TOKEN))
    assert withdrawn.status_code == 200
    assert withdrawn.json()["status"] == "withdrawn"

    again = api.post(f"/proposals/{proposal['id']}/withdraw", headers=auth(PROPOSER_TOKEN))
    assert again.status_code == 409


def test_resubmit_creates_revision(api, backend):
    seed_config(backend)
    proposal = _submit(api).json()

    response = api.post(
        f"/proposals/{proposal['id']}/resubmit",
        json={"text": PROPOSAL_TEXT + " Adds a maintenance fund."},
        headers=auth(PROPOSER_TOKEN),
    )

    assert response.status_code == 200
    assert response.json()["current_revision"] == 2


def test_apply_alternative_out_of_range(api, backend):
    seed_config(backend)
    proposal = _submit(api).json()

    response = api.post(
        f"/proposals/{proposal['id']}/alternatives/0/apply", headers=auth(PROPOSER_TOKEN)
    )

    assert response.status_code == 422


def test_status_update_is_admin_only(api, backend):
    seed_config(backend)
    proposal = _submit(api).json()
    url = f"/proposals/{proposal['id']}/status"

    forbidden = api.post(url, json={"status": "approved"}, headers=auth(PROPOSER_TOKEN))
    assert forbidden.status_code == 403
    assert api.post(url, json={"status": "funded"}, headers=auth(ADMIN_TOKEN)).status_code == 409
    assert api.post(url, json={"status": "bogus"}, headers=auth(ADMIN_TOKEN)).status_code == 422

    approved = api.post(url, json={"status": "approved"}, headers=auth(ADMIN_TOKEN))
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"


def test_council_vote_decides_proposal(api, backend, evaluator):
    seed_config(backend)
    evaluator.assessment = make_assessment(budget=12000)
    proposal = _submit(api).json()
    assert proposal["council_required"] is True
    api.post(
        f"/proposals/{proposal['id']}/status",
        json={"status": "votable"},
        headers=auth(ADMIN_TOKEN),
    )
    url = f"/proposals/{proposal['id']}/votes"

    assert api.post(url, json={"choice": "FOR"}, headers=auth(MEMBER_TOKEN)).status_code == 403

    result = api.post(url, json={"choice": "FOR"}, headers=auth(ADMIN_TOKEN))

    assert result.status_code == 200
    body = result.json()
    assert body["status_changed"] is True
    assert body["status"] == "approved"
    tally = api.get(url).json()
    assert tally["for_count"] == 1
    assert tally["quorum_met"] is True
