import os

# Settings are read when coopgov.config is first imported
os.environ.setdefault("COOPGOV_BACKEND", "memory")
os.environ.setdefault("COOPGOV_ADMIN_WALLETS", "0xadmin1,0xadmin2,0xadmin3")

from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from coopgov.api import dependencies
from coopgov.backend.memory import MemoryBackend
from coopgov.backend.models import (
    Caller,
    CoopConfig,
    CoopConfigCreate,
    ProposalMetadata,
)
from coopgov.lib.locks import KeyedLock
from coopgov.main import app
from coopgov.services.ai.evaluator import AbstractProposalEvaluator
from coopgov.services.ai.models import (
    AlternativeSuggestion,
    CommentAssessment,
    ExtractedProposalFields,
    GoalAssessment,
    ProposalAssessment,
    StructuralAssessment,
)
from coopgov.services.ai.scoring import ScoringEngine
from coopgov.services.amendments import AmendmentWorkflow
from coopgov.services.community import CommunityService
from coopgov.services.config_defaults import default_policy
from coopgov.services.config_store import ConfigStore
from coopgov.services.council import CouncilVoting
from coopgov.services.experts import ExpertService
from coopgov.services.identity import BackendTokenLedger, IdentityProvider
from coopgov.services.proposals import ProposalLifecycle

COOP_ID = "test-coop"
ADMIN = Caller(wallet_address="0xadmin1", is_admin=True)
PROPOSER = Caller(wallet_address="0xproposer", is_admin=False)
OTHER_MEMBER = Caller(wallet_address="0xmember", is_admin=False)

GOAL_KEYS = ["income_stability", "asset_creation", "leakage_reduction", "export_expansion"]

PROPOSAL_TEXT = (
    "Fund a community solar installation on the co-op warehouse roof, "
    "selling power to members at cost and surplus to the regional grid."
)


def make_assessment(
    goal_score: float = 0.8,
    goal_overrides: Optional[Dict[str, float]] = None,
    structural: float = 0.8,
    budget: Optional[float] = 300.0,
    category: Optional[str] = "infrastructure",
    title: str = "Warehouse Solar Array",
    summary: str = "Community-owned solar on the warehouse roof.",
    alternatives: Optional[List[AlternativeSuggestion]] = None,
    missing_information: Optional[List[str]] = None,
) -> ProposalAssessment:
    scores = {key: goal_score for key in GOAL_KEYS}
    scores.update(goal_overrides or {})
    return ProposalAssessment(
        extracted=ExtractedProposalFields(
            title=title,
            summary=summary,
            category=category,
            budget_amount=budget,
            currency="USD",
        ),
        goal_scores=[
            GoalAssessment(goal_id=key, score=score, rationale=f"{key} rationale")
            for key, score in scores.items()
        ],
        structural_scores=StructuralAssessment(
            feasibility=structural, risk=structural, accountability=structural
        ),
        audit_notes=[],
        alternatives=alternatives or [],
        missing_information=missing_information or [],
    )


class FakeEvaluator(AbstractProposalEvaluator):
    """Evaluator returning queued assessments; raises queued exceptions."""

    def __init__(self, assessment: Optional[ProposalAssessment] = None):
        self.assessment = assessment or make_assessment()
        self.queue: List = []
        self.calls: List[Dict] = []
        self.comment_assessment = CommentAssessment(
            score=0.75,
            analysis="Supports member income.",
            goals_impacted=["income_stability", "not_a_goal"],
        )
        self.comment_error: Optional[Exception] = None

    async def assess_proposal(
        self, text: str, metadata: ProposalMetadata, config: CoopConfig
    ) -> ProposalAssessment:
        self.calls.append({"text": text, "metadata": metadata, "version": config.version})
        result = self.queue.pop(0) if self.queue else self.assessment
        if isinstance(result, Exception):
            raise result
        return result

    async def assess_comment(
        self, text: str, proposal_summary: str, config: CoopConfig
    ) -> CommentAssessment:
        if self.comment_error is not None:
            raise self.comment_error
        return self.comment_assessment


def seed_config(backend: MemoryBackend, coop_id: str = COOP_ID, **overrides) -> CoopConfig:
    return backend.create_coop_config(
        CoopConfigCreate(
            coop_id=coop_id,
            version=1,
            is_active=True,
            created_by=ADMIN.wallet_address,
            **{**default_policy(), **overrides},
        )
    )


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def config_store(backend, locks) -> ConfigStore:
    return ConfigStore(backend, locks=locks)


@pytest.fixture
def evaluator() -> FakeEvaluator:
    return FakeEvaluator()


ADMIN_TOKEN = "admin-token"
PROPOSER_TOKEN = "proposer-token"
MEMBER_TOKEN = "member-token"


def auth(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api(backend, config_store, evaluator, locks):
    """A TestClient whose services run on the in-memory backend."""
    backend.register_session(ADMIN_TOKEN, ADMIN.wallet_address)
    backend.register_session(PROPOSER_TOKEN, PROPOSER.wallet_address)
    backend.register_session(MEMBER_TOKEN, OTHER_MEMBER.wallet_address)

    identity = IdentityProvider(backend, admin_wallets=[ADMIN.wallet_address])
    lifecycle = ProposalLifecycle(
        backend,
        config_store,
        ScoringEngine(evaluator, engine_version="engine@test", max_retries=0),
        BackendTokenLedger(backend),
        locks=locks,
    )
    council = CouncilVoting(backend, config_store, identity, locks=locks, min_votes=1)
    overrides = {
        dependencies.get_identity: lambda: identity,
        dependencies.get_config_store: lambda: config_store,
        dependencies.get_amendment_workflow: lambda: AmendmentWorkflow(
            backend, config_store, locks=locks
        ),
        dependencies.get_proposal_lifecycle: lambda: lifecycle,
        dependencies.get_council: lambda: council,
        dependencies.get_experts: lambda: ExpertService(backend, locks=locks),
        dependencies.get_community: lambda: CommunityService(
            backend, config_store, evaluator, timeout_seconds=0.5
        ),
    }
    app.dependency_overrides.update(overrides)
    yield TestClient(app)
    app.dependency_overrides.clear()
