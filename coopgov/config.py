import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

from coopgov.lib.logger import configure_logger

logger = configure_logger(__name__)

load_dotenv()


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class DatabaseConfig:
    backend: str = os.getenv("COOPGOV_BACKEND", "supabase")
    user: str = os.getenv("COOPGOV_SUPABASE_USER", "")
    password: str = os.getenv("COOPGOV_SUPABASE_PASSWORD", "")
    host: str = os.getenv("COOPGOV_SUPABASE_HOST", "")
    port: str = os.getenv("COOPGOV_SUPABASE_PORT", "")
    dbname: str = os.getenv("COOPGOV_SUPABASE_DBNAME", "")
    url: str = os.getenv("COOPGOV_SUPABASE_URL", "")
    service_key: str = os.getenv("COOPGOV_SUPABASE_SERVICE_KEY", "")


@dataclass
class ChatLLMConfig:
    """Configuration for chat-based LLM models."""

    default_model: str = os.getenv("COOPGOV_CHAT_DEFAULT_MODEL", "gpt-4.1")
    default_temperature: float = float(
        os.getenv("COOPGOV_CHAT_DEFAULT_TEMPERATURE", "0.2")
    )
    api_base: str = os.getenv("COOPGOV_CHAT_API_BASE", "")
    api_key: str = os.getenv("COOPGOV_CHAT_API_KEY", "")
    # Comment alignment runs on a cheaper model
    comment_model: str = os.getenv("COOPGOV_CHAT_COMMENT_MODEL", "gpt-4.1-mini")


@dataclass
class ScoringConfig:
    """Configuration for the proposal scoring pipeline."""

    engine_version: str = os.getenv(
        "COOPGOV_SCORING_ENGINE_VERSION", "proposal-engine@agents-1.0.0"
    )
    timeout_seconds: float = float(os.getenv("COOPGOV_SCORING_TIMEOUT_SECONDS", "120"))
    # Retries after the first attempt, with the same inputs
    max_retries: int = int(os.getenv("COOPGOV_SCORING_MAX_RETRIES", "1"))
    comment_timeout_seconds: float = float(
        os.getenv("COOPGOV_SCORING_COMMENT_TIMEOUT_SECONDS", "30")
    )


@dataclass
class GovernanceConfig:
    """Runtime governance settings that are not part of a coop's policy document."""

    default_coop_id: str = os.getenv("COOPGOV_DEFAULT_COOP_ID", "soulaan")
    admin_wallets: List[str] = field(
        default_factory=lambda: [
            wallet.lower()
            for wallet in _split_list(os.getenv("COOPGOV_ADMIN_WALLETS", ""))
        ]
    )
    min_council_votes: int = int(os.getenv("COOPGOV_MIN_COUNCIL_VOTES", "2"))
    expert_reason_min_length: int = int(
        os.getenv("COOPGOV_EXPERT_REASON_MIN_LENGTH", "5")
    )
    expert_reason_max_length: int = int(
        os.getenv("COOPGOV_EXPERT_REASON_MAX_LENGTH", "1000")
    )
    proposal_text_min_length: int = int(
        os.getenv("COOPGOV_PROPOSAL_TEXT_MIN_LENGTH", "20")
    )
    proposal_text_max_length: int = int(
        os.getenv("COOPGOV_PROPOSAL_TEXT_MAX_LENGTH", "10000")
    )
    comment_max_length: int = int(os.getenv("COOPGOV_COMMENT_MAX_LENGTH", "2000"))
    default_page_size: int = int(os.getenv("COOPGOV_DEFAULT_PAGE_SIZE", "20"))


@dataclass
class APIConfig:
    host: str = os.getenv("COOPGOV_API_HOST", "0.0.0.0")
    port: int = int(os.getenv("COOPGOV_API_PORT", "8000"))
    cors_origins: List[str] = field(
        default_factory=lambda: _split_list(
            os.getenv("COOPGOV_CORS_ORIGINS", "http://localhost:3000")
        )
    )


@dataclass
class Config:
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    chat_llm: ChatLLMConfig = field(default_factory=ChatLLMConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    governance: GovernanceConfig = field(default_factory=GovernanceConfig)
    api: APIConfig = field(default_factory=APIConfig)

    @classmethod
    def load(cls) -> "Config":
        """Load and validate configuration"""
        config = cls()
        logger.info(
            "Configuration loaded successfully",
            extra={"db_backend": config.db.backend},
        )
        return config


# Global configuration instance
config = Config.load()
