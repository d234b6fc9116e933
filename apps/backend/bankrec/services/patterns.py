"""Pattern learner: fingerprints confirmed matches and suggests pairings from them.

A pattern is keyed by the transaction's description template, amount order of
magnitude and direction, plus the target record type and counterparty.
Confirmations strengthen a pattern, rejections weaken it, and a pattern whose
strength falls below the deactivation floor stops producing suggestions.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Protocol
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bankrec.logger import get_logger
from bankrec.models import BankTransaction, MatchingPattern, MatchSource, PatternType
from bankrec.services.candidates import CandidateMatch, confidence_for, to_score
from bankrec.services.collaborators import CandidateRecord
from bankrec.services.matching_config import MatchingConfig, load_matching_config
from bankrec.services.rules import description_similarity, normalize_text

logger = get_logger(__name__)

_MONTH_TOKENS = {
    "jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "sept", "oct", "nov", "dec",
    "january", "february", "march", "april", "june", "july", "august", "september",
    "october", "november", "december",
}  # fmt: skip

_TYPE_KEYWORDS: list[tuple[PatternType, tuple[str, ...]]] = [
    (PatternType.SALARY, ("salary", "payroll", "wages")),
    (PatternType.TAX, ("tax", "irs", "hmrc", "iras")),
    (PatternType.UTILITY, ("electric", "electricity", "water", "gas", "power", "utility")),
    (PatternType.SUBSCRIPTION, ("subscription", "membership", "monthly plan")),
]


def description_template(description: str) -> str:
    """Normalized description with numbers and date tokens removed."""
    words = normalize_text(description).split()
    kept = [word for word in words if not re.search(r"\d", word) and word not in _MONTH_TOKENS]
    return " ".join(kept)


def amount_bucket(amount: int) -> int:
    """Order of magnitude of a minor-unit amount."""
    return len(str(abs(amount))) - 1


def _digest(*components: object) -> str:
    return hashlib.sha256("|".join(str(c) for c in components).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Fingerprint:
    template: str
    amount_bucket: int
    direction: str
    record_type: str
    counterparty: str
    day_of_month: int
    day_of_week: int

    @property
    def signature(self) -> str:
        return _digest(self.template, self.amount_bucket, self.direction)

    @property
    def family_key(self) -> str:
        return _digest(self.amount_bucket, self.direction, self.record_type, self.counterparty)

    @property
    def pattern_key(self) -> str:
        return _digest(self.template, self.amount_bucket, self.direction, self.record_type, self.counterparty)


def fingerprint(txn: BankTransaction, record_type: str, counterparty: str | None) -> Fingerprint:
    return Fingerprint(
        template=description_template(txn.description or ""),
        amount_bucket=amount_bucket(txn.amount),
        direction=txn.direction.value,
        record_type=record_type,
        counterparty=normalize_text(counterparty or ""),
        day_of_month=txn.txn_date.day,
        day_of_week=txn.txn_date.weekday(),
    )


def classify_pattern(template: str, counterparty: str, months_seen: list[str], recurring_months: int) -> PatternType:
    text = f"{template} {counterparty}"
    for pattern_type, keywords in _TYPE_KEYWORDS:
        if any(re.search(rf"\b{re.escape(keyword)}\b", text) for keyword in keywords):
            return pattern_type
    if len(set(months_seen)) >= recurring_months:
        return PatternType.RECURRING
    return PatternType.VENDOR_AMOUNT


# =============================================================================
# Storage
# =============================================================================


class PatternStore(Protocol):
    """Persistence for learned patterns."""

    async def get(self, pattern_key: str) -> MatchingPattern | None: ...

    async def family(self, family_key: str) -> list[MatchingPattern]: ...

    async def candidates(self, amount_bucket: int, direction: str) -> list[MatchingPattern]: ...

    async def add(self, pattern: MatchingPattern) -> None: ...

    async def save(self, pattern: MatchingPattern) -> None: ...


class SqlPatternStore:
    """Patterns owned by one user, stored in ``matching_patterns``."""

    def __init__(self, db: AsyncSession, user_id: UUID) -> None:
        self.db = db
        self.user_id = user_id

    async def get(self, pattern_key: str) -> MatchingPattern | None:
        result = await self.db.execute(
            select(MatchingPattern)
            .where(MatchingPattern.user_id == self.user_id)
            .where(MatchingPattern.pattern_key == pattern_key)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def family(self, family_key: str) -> list[MatchingPattern]:
        result = await self.db.execute(
            select(MatchingPattern)
            .where(MatchingPattern.user_id == self.user_id)
            .where(MatchingPattern.family_key == family_key)
            .with_for_update()
        )
        return list(result.scalars().all())

    async def candidates(self, amount_bucket: int, direction: str) -> list[MatchingPattern]:
        result = await self.db.execute(
            select(MatchingPattern)
            .where(MatchingPattern.user_id == self.user_id)
            .where(MatchingPattern.amount_bucket == amount_bucket)
            .where(MatchingPattern.direction == direction)
            .where(MatchingPattern.is_active.is_(True))
        )
        return list(result.scalars().all())

    async def add(self, pattern: MatchingPattern) -> None:
        pattern.user_id = self.user_id
        self.db.add(pattern)
        await self.db.flush()

    async def save(self, pattern: MatchingPattern) -> None:
        await self.db.flush()


class InMemoryPatternStore:
    """Dictionary-backed store for isolated learner runs."""

    def __init__(self, user_id: UUID | None = None) -> None:
        self.user_id = user_id or uuid4()
        self.patterns: dict[str, MatchingPattern] = {}

    async def get(self, pattern_key: str) -> MatchingPattern | None:
        return self.patterns.get(pattern_key)

    async def family(self, family_key: str) -> list[MatchingPattern]:
        return [p for p in self.patterns.values() if p.family_key == family_key]

    async def candidates(self, amount_bucket: int, direction: str) -> list[MatchingPattern]:
        return [
            p
            for p in self.patterns.values()
            if p.amount_bucket == amount_bucket and p.direction == direction and p.is_active
        ]

    async def add(self, pattern: MatchingPattern) -> None:
        pattern.user_id = self.user_id
        if pattern.id is None:
            pattern.id = uuid4()
        self.patterns[pattern.pattern_key] = pattern

    async def save(self, pattern: MatchingPattern) -> None:
        self.patterns[pattern.pattern_key] = pattern


class KeyedLocks:
    """One asyncio lock per key; unused locks are dropped with their last holder."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        async with lock:
            yield


# Learning for the same family is serialized process-wide.
_pattern_locks = KeyedLocks()


# =============================================================================
# Learner
# =============================================================================


class PatternLearner:
    """Suggests candidates from learned patterns and updates them from outcomes."""

    def __init__(
        self,
        store: PatternStore,
        config: MatchingConfig | None = None,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.store = store
        self.config = config or load_matching_config()
        self.locks = locks or _pattern_locks

    def _template_matches(self, pattern_template: str, template: str) -> bool:
        if pattern_template == template:
            return True
        return description_similarity(pattern_template, template) >= self.config.pattern_template_similarity

    async def suggest(self, txn: BankTransaction, pool: list[CandidateRecord]) -> list[CandidateMatch]:
        template = description_template(txn.description or "")
        bucket = amount_bucket(txn.amount)
        patterns = await self.store.candidates(bucket, txn.direction.value)

        suggestions: list[CandidateMatch] = []
        for pattern in patterns:
            if not self._template_matches(pattern.description_template, template):
                continue
            score = to_score(Decimal(pattern.strength) * Decimal(str(pattern.success_rate)))
            if score <= 0:
                continue
            for record in pool:
                if record.record_type != pattern.record_type:
                    continue
                if normalize_text(record.counterparty or record.description) != pattern.counterparty:
                    continue
                if amount_bucket(record.amount) != bucket:
                    continue
                suggestions.append(
                    CandidateMatch(
                        record=record,
                        score=score,
                        confidence=confidence_for(score, self.config),
                        source=MatchSource.PATTERN,
                        reasons=[
                            f"Learned {pattern.pattern_type.value.replace('_', ' ')} pattern "
                            f"confirmed {pattern.confirmations} time(s)"
                        ],
                    )
                )
        return suggestions

    async def _find_pattern(self, fp: Fingerprint) -> MatchingPattern | None:
        exact = await self.store.get(fp.pattern_key)
        if exact is not None:
            return exact
        best: MatchingPattern | None = None
        best_similarity = Decimal("0")
        for pattern in await self.store.family(fp.family_key):
            similarity = description_similarity(pattern.description_template, fp.template)
            if similarity >= self.config.pattern_template_similarity and similarity > best_similarity:
                best, best_similarity = pattern, similarity
        return best

    async def learn_confirmed(
        self,
        txn: BankTransaction,
        record_type: str,
        counterparty: str | None,
    ) -> MatchingPattern:
        fp = fingerprint(txn, record_type, counterparty)
        month = txn.txn_date.strftime("%Y-%m")
        now = datetime.now(UTC)

        async with self.locks.hold(fp.family_key):
            pattern = await self._find_pattern(fp)
            if pattern is None:
                pattern = MatchingPattern(
                    pattern_key=fp.pattern_key,
                    signature=fp.signature,
                    family_key=fp.family_key,
                    description_template=fp.template,
                    amount_bucket=fp.amount_bucket,
                    direction=fp.direction,
                    record_type=fp.record_type,
                    counterparty=fp.counterparty,
                    features=_features(fp, [month]),
                    confirmations=1,
                    rejections=0,
                    strength=self.config.pattern_initial_strength,
                    is_active=True,
                    last_used_at=now,
                )
                pattern.pattern_type = classify_pattern(
                    fp.template, fp.counterparty, [month], self.config.pattern_recurring_months
                )
                await self.store.add(pattern)
                logger.info("Pattern learned", pattern_key=fp.pattern_key[:12], record_type=record_type)
                return pattern

            months = sorted(set((pattern.features or {}).get("months_seen", [])) | {month})
            pattern.confirmations += 1
            pattern.strength = min(
                self.config.pattern_strength_max,
                pattern.strength + self.config.pattern_strength_increment,
            )
            if pattern.strength >= self.config.pattern_deactivation_floor:
                pattern.is_active = True
            pattern.features = _features(fp, months)
            pattern.pattern_type = classify_pattern(
                pattern.description_template, pattern.counterparty, months, self.config.pattern_recurring_months
            )
            pattern.last_used_at = now
            await self.store.save(pattern)
            logger.debug(
                "Pattern reinforced",
                pattern_key=pattern.pattern_key[:12],
                strength=pattern.strength,
                confirmations=pattern.confirmations,
            )
            return pattern

    async def learn_rejected(
        self,
        txn: BankTransaction,
        record_type: str,
        counterparty: str | None,
    ) -> MatchingPattern | None:
        fp = fingerprint(txn, record_type, counterparty)

        async with self.locks.hold(fp.family_key):
            pattern = await self._find_pattern(fp)
            if pattern is None:
                logger.debug("No pattern to weaken", pattern_key=fp.pattern_key[:12])
                return None
            pattern.rejections += 1
            pattern.strength = max(0, pattern.strength - self.config.pattern_strength_decrement)
            if pattern.strength < self.config.pattern_deactivation_floor:
                pattern.is_active = False
            pattern.last_used_at = datetime.now(UTC)
            await self.store.save(pattern)
            logger.info(
                "Pattern weakened",
                pattern_key=pattern.pattern_key[:12],
                strength=pattern.strength,
                is_active=pattern.is_active,
            )
            return pattern


def _features(fp: Fingerprint, months_seen: list[str]) -> dict:
    return {
        "day_of_month": fp.day_of_month,
        "day_of_week": fp.day_of_week,
        "months_seen": months_seen,
    }


# =============================================================================
# Queries
# =============================================================================


async def list_patterns(
    db: AsyncSession,
    *,
    user_id: UUID,
    active_only: bool = False,
    pattern_type: PatternType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[MatchingPattern], int]:
    query = select(MatchingPattern).where(MatchingPattern.user_id == user_id)
    if active_only:
        query = query.where(MatchingPattern.is_active.is_(True))
    if pattern_type is not None:
        query = query.where(MatchingPattern.pattern_type == pattern_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(MatchingPattern.strength.desc(), MatchingPattern.created_at).limit(limit).offset(offset)
    )
    return list(result.scalars().all()), total


async def pattern_statistics(db: AsyncSession, *, user_id: UUID) -> dict:
    """Counts by type and activity plus the mean success rate of used patterns."""
    result = await db.execute(
        select(
            MatchingPattern.pattern_type,
            MatchingPattern.is_active,
            MatchingPattern.confirmations,
            MatchingPattern.rejections,
        ).where(MatchingPattern.user_id == user_id)
    )
    by_type: dict[str, int] = {}
    active = inactive = 0
    rates: list[float] = []
    for pattern_type, is_active, confirmations, rejections in result.all():
        by_type[pattern_type.value] = by_type.get(pattern_type.value, 0) + 1
        if is_active:
            active += 1
        else:
            inactive += 1
        if confirmations + rejections:
            rates.append(confirmations / (confirmations + rejections))
    return {
        "total": active + inactive,
        "active": active,
        "inactive": inactive,
        "by_type": by_type,
        "average_success_rate": round(sum(rates) / len(rates), 4) if rates else 0.0,
    }
