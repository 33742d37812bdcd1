"""Identity and token-ledger collaborators.

Both are read-only from the governance core's point of view: sessions are
issued by Supabase auth, admin wallets come from configuration, and SC
balances are published by the ledger indexer.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from coopgov.backend.abstract import AbstractBackend
from coopgov.backend.models import Caller
from coopgov.config import config
from coopgov.lib.logger import configure_logger

logger = configure_logger(__name__)


class IdentityProvider:
    """Resolves session tokens to callers and knows who sits on the council."""

    def __init__(self, backend: AbstractBackend, admin_wallets: Optional[Iterable[str]] = None):
        self.backend = backend
        wallets = admin_wallets if admin_wallets is not None else config.governance.admin_wallets
        self.admin_wallets = [wallet.lower() for wallet in wallets]

    def is_admin(self, wallet_address: str) -> bool:
        return bool(wallet_address) and wallet_address.lower() in self.admin_wallets

    def caller_for(self, wallet_address: str) -> Caller:
        return Caller(
            wallet_address=wallet_address, is_admin=self.is_admin(wallet_address)
        )

    def resolve(self, token: str) -> Optional[Caller]:
        """Resolve a bearer token to a Caller, or None when the session is invalid."""
        wallet_address = self.backend.verify_session_token(token)
        if not wallet_address:
            logger.debug("Session token did not resolve to a wallet")
            return None
        return self.caller_for(wallet_address)

    def council_members(self, coop_id: str) -> List[str]:
        """Wallets eligible to cast council votes for a coop."""
        return list(self.admin_wallets)


class AbstractTokenLedger(ABC):
    @abstractmethod
    def get_sc_balance(self, coop_id: str, wallet_address: str) -> float:
        pass


class BackendTokenLedger(AbstractTokenLedger):
    """Reads balances from the ledger's published view through the backend."""

    def __init__(self, backend: AbstractBackend):
        self.backend = backend

    def get_sc_balance(self, coop_id: str, wallet_address: str) -> float:
        return self.backend.get_sc_balance(coop_id, wallet_address)
