"""User accounts and build credits."""

from typing import Protocol, runtime_checkable

import structlog

from app.core.exceptions import InsufficientCreditsError

logger = structlog.get_logger(__name__)


@runtime_checkable
class AccountService(Protocol):
    async def get_credits(self, user_id: str) -> int: ...

    async def debit_credit(self, user_id: str) -> int:
        """Take one build credit and return the remaining balance.

        Raises:
            InsufficientCreditsError: If the balance is already zero
        """
        ...


class InMemoryAccountService:
    """Every unseen user starts with ``default_credits``."""

    def __init__(self, default_credits: int = 3) -> None:
        self.default_credits = default_credits
        self.balances: dict[str, int] = {}

    async def get_credits(self, user_id: str) -> int:
        return self.balances.setdefault(user_id, self.default_credits)

    async def debit_credit(self, user_id: str) -> int:
        balance = self.balances.setdefault(user_id, self.default_credits)
        if balance <= 0:
            raise InsufficientCreditsError(user_id)
        self.balances[user_id] = balance - 1
        logger.info("credit_debited", user_id=user_id, remaining=balance - 1)
        return balance - 1

    def set_credits(self, user_id: str, credits: int) -> None:
        self.balances[user_id] = credits
