from typing import Optional

from coopgov.backend.models import Caller
from coopgov.lib.errors import ForbiddenError


def same_wallet(left: Optional[str], right: Optional[str]) -> bool:
    """Compare wallet addresses case-insensitively."""
    if not left or not right:
        return False
    return left.lower() == right.lower()


def require_admin(caller: Caller, action: str) -> None:
    """Raise ForbiddenError unless the caller is a coop admin."""
    if not caller.is_admin:
        raise ForbiddenError(
            f"Only coop admins can {action}",
            {"wallet_address": caller.wallet_address, "action": action},
        )
