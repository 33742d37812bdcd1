import pytest

from coopgov.backend.models import CoopConfigBase, StructuralWeights
from coopgov.lib.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
)
from coopgov.services.config_defaults import DEFAULT_MISSION_GOALS
from coopgov.services.config_store import compute_diff
from conftest import ADMIN, COOP_ID, PROPOSER, seed_config


@pytest.mark.asyncio
async def test_create_seeds_defaults(config_store):
    """Omitted fields are filled from the default policy."""
    created = await config_store.create(
        COOP_ID, CoopConfigBase(quorum_percent=25), ADMIN
    )

    assert created.version == 1
    assert created.is_active
    assert created.quorum_percent == 25
    assert created.goal_keys() == [goal["key"] for goal in DEFAULT_MISSION_GOALS]
    assert created.created_by == ADMIN.wallet_address


@pytest.mark.asyncio
async def test_create_requires_admin(config_store):
    with pytest.raises(ForbiddenError):
        await config_store.create(COOP_ID, CoopConfigBase(), PROPOSER)


@pytest.mark.asyncio
async def test_create_twice_conflicts(config_store):
    await config_store.create(COOP_ID, CoopConfigBase(), ADMIN)

    with pytest.raises(ConflictError):
        await config_store.create(COOP_ID, CoopConfigBase(), ADMIN)


@pytest.mark.asyncio
async def test_update_creates_next_version_with_audit(backend, config_store):
    """An update activates version+1 and records only the changed fields."""
    seed_config(backend)

    updated = await config_store.update(
        COOP_ID,
        CoopConfigBase(quorum_percent=30, approval_threshold_percent=51),
        "Raise quorum",
        ADMIN,
    )

    assert updated.version == 2
    assert config_store.require_active(COOP_ID).version == 2
    assert config_store.get_version(COOP_ID, 1).is_active is False
    assert [c.version for c in config_store.list_versions(COOP_ID)] == [1, 2]

    trail = config_store.get_audit_trail(COOP_ID)
    assert trail.total == 1
    entry = trail.entries[0]
    assert entry.config_version == 2
    assert entry.reason == "Raise quorum"
    # approval threshold was already 51
    assert [d.field for d in entry.diff] == ["quorum_percent"]
    assert entry.diff[0].before == 15.0
    assert entry.diff[0].after == 30.0


@pytest.mark.asyncio
async def test_update_keeps_untouched_fields(backend, config_store):
    seed_config(backend)

    updated = await config_store.update(
        COOP_ID,
        CoopConfigBase(
            structural_weights=StructuralWeights(
                feasibility=0.5, risk=0.25, accountability=0.25
            )
        ),
        "Favour feasibility",
        ADMIN,
    )

    assert updated.structural_weights.feasibility == 0.5
    assert updated.quorum_percent == 15.0
    assert updated.goal_keys() == [goal["key"] for goal in DEFAULT_MISSION_GOALS]


@pytest.mark.asyncio
async def test_update_without_fields_is_invalid(backend, config_store):
    seed_config(backend)

    with pytest.raises(InvalidInputError):
        await config_store.update(COOP_ID, CoopConfigBase(), "Nothing", ADMIN)


@pytest.mark.asyncio
async def test_update_unknown_coop(config_store):
    with pytest.raises(NotFoundError):
        await config_store.update(
            "missing", CoopConfigBase(quorum_percent=10), "x", ADMIN
        )


@pytest.mark.asyncio
async def test_update_requires_admin(backend, config_store):
    seed_config(backend)

    with pytest.raises(ForbiddenError):
        await config_store.update(
            COOP_ID, CoopConfigBase(quorum_percent=10), "x", PROPOSER
        )
    assert config_store.require_active(COOP_ID).version == 1


def test_get_version_missing(backend, config_store):
    seed_config(backend)

    with pytest.raises(NotFoundError):
        config_store.get_version(COOP_ID, 9)


def test_audit_trail_paging_bounds(config_store):
    with pytest.raises(InvalidInputError):
        config_store.get_audit_trail(COOP_ID, limit=0)
    with pytest.raises(InvalidInputError):
        config_store.get_audit_trail(COOP_ID, limit=101)
    with pytest.raises(InvalidInputError):
        config_store.get_audit_trail(COOP_ID, offset=-1)


def test_compute_diff_only_reports_supplied_changes(backend):
    current = seed_config(backend)

    diff = compute_diff(current, {"quorum_percent": 15.0, "voting_window_days": 10})

    assert len(diff) == 1
    assert diff[0].field == "voting_window_days"
    assert diff[0].before == 7
    assert diff[0].after == 10
