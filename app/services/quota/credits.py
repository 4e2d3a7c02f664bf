"""
Credit Ledger

Diamonds gate the AI transcription path. A balance regenerates
continuously: one diamond every `regen_seconds / max_balance` seconds since
the last debit, capped at `max_balance`. Nothing ticks in the background;
the balance is recomputed from (stored balance, last debit time) on every
read and debit.

Authenticated callers keep their balance on their account row, anonymous
callers in the hot cache under `diamonds:{identity}` with a multi-day TTL.

Debits are read-modify-write without a transaction. Two concurrent debits
that both read a balance of N both persist N-1, so a racing client can get
one extra AI job per race. Storage failures fail open (full balance).
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import get_logger
from app.infra.hot_cache import HotCache
from app.models.user import UserAccount

logger = get_logger(__name__)


@dataclass(frozen=True)
class CreditBalance:
    balance: int
    max_balance: int
    next_regen_at: Optional[int]  # epoch millis, None when full


@dataclass(frozen=True)
class DebitResult:
    success: bool
    balance: int
    next_regen_at: Optional[int]


def _to_millis(epoch_seconds: Optional[float]) -> Optional[int]:
    if epoch_seconds is None:
        return None
    return int(math.ceil(epoch_seconds * 1000))


class CreditLedger:
    def __init__(
        self,
        hot_cache: HotCache,
        session_factory: async_sessionmaker[AsyncSession],
        max_balance: int = 3,
        regen_seconds: int = 3600,
        anonymous_ttl_seconds: int = 3 * 24 * 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.hot_cache = hot_cache
        self.session_factory = session_factory
        self.max_balance = max_balance
        self.regen_seconds = regen_seconds
        self.anonymous_ttl_seconds = anonymous_ttl_seconds
        self.clock = clock

    @property
    def regen_per_credit(self) -> float:
        return self.regen_seconds / self.max_balance

    @staticmethod
    def key(identity: str) -> str:
        return f"diamonds:{identity}"

    def recompute(
        self,
        stored: Optional[int],
        last_debit_at: Optional[float],
        now: float,
    ) -> Tuple[int, Optional[float]]:
        """(current balance, next regeneration time in epoch seconds)"""
        if stored is None or last_debit_at is None:
            return self.max_balance, None

        stored = max(0, min(int(stored), self.max_balance))
        elapsed = max(0.0, now - last_debit_at)
        per = self.regen_per_credit
        balance = min(self.max_balance, stored + int(elapsed // per))

        if balance >= self.max_balance:
            return balance, None
        return balance, now + (per - elapsed % per)

    async def get_balance(self, identity: str, authenticated: bool = False) -> CreditBalance:
        now = self.clock()
        stored, last_debit_at = await self._load(identity, authenticated)
        balance, next_regen = self.recompute(stored, last_debit_at, now)
        return CreditBalance(balance, self.max_balance, _to_millis(next_regen))

    async def debit(self, identity: str, authenticated: bool = False) -> DebitResult:
        now = self.clock()
        stored, last_debit_at = await self._load(identity, authenticated)
        balance, next_regen = self.recompute(stored, last_debit_at, now)

        if balance <= 0:
            return DebitResult(success=False, balance=0, next_regen_at=_to_millis(next_regen))

        remaining = balance - 1
        await self._save(identity, authenticated, remaining, now)
        logger.info(f"Debited 1 diamond from {identity}, {remaining}/{self.max_balance} left")
        return DebitResult(
            success=True,
            balance=remaining,
            next_regen_at=_to_millis(now + self.regen_per_credit),
        )

    async def _load(self, identity: str, authenticated: bool) -> Tuple[Optional[int], Optional[float]]:
        if authenticated:
            try:
                async with self.session_factory() as session:
                    account = await session.get(UserAccount, identity)
            except SQLAlchemyError as e:
                logger.error(f"Failed to load diamonds for user {identity}: {e}")
                return None, None
            if account is None:
                return None, None
            return account.diamonds, account.diamonds_updated_at

        state = await self.hot_cache.get_json(self.key(identity))
        if not isinstance(state, dict):
            return None, None
        try:
            return int(state["diamonds"]), float(state["lastUsedAt"])
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Malformed diamond state for {identity}, treating as full")
            return None, None

    async def _save(self, identity: str, authenticated: bool, balance: int, now: float) -> None:
        if authenticated:
            try:
                async with self.session_factory() as session:
                    account = await session.get(UserAccount, identity)
                    if account is None:
                        account = UserAccount(id=identity)
                        session.add(account)
                    account.diamonds = balance
                    account.diamonds_updated_at = now
                    await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Failed to persist diamonds for user {identity}: {e}")
            return

        await self.hot_cache.put_json(
            self.key(identity),
            {"diamonds": balance, "lastUsedAt": now},
            self.anonymous_ttl_seconds,
        )
