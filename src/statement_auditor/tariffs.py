import bisect
import re
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta

from rapidfuzz import fuzz, process

from statement_auditor.analysis.similarity import token_similarity
from statement_auditor.domain.patterns import (
    RULES_BY_CODE,
    FeeRule,
    fold_text,
    has_fee_keyword,
    has_service_keyword,
    match_fee_rule,
    meaningful_keywords,
)
from statement_auditor.logger import get_logger
from statement_auditor.models import (
    BankConditions,
    FeeSchedule,
    InterestRate,
    Transaction,
    TransactionType,
)

logger = get_logger(__name__)

FUZZY_SCHEDULE_CUTOFF = 85.0
RELATED_SERVICE_SIMILARITY = 0.3
DEFAULT_CURRENCY = "XAF"

_CODE_SPLIT_RE = re.compile(r"[^A-Z0-9]+")
_WORD_RE = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class FeeClassification:
    is_fee: bool
    rule: FeeRule | None = None

    @property
    def code(self) -> str | None:
        return self.rule.code if self.rule else None


@dataclass(frozen=True)
class ResolvedFee:
    schedule: FeeSchedule
    conditions: BankConditions


@dataclass(frozen=True)
class ResolvedRate:
    rate: InterestRate
    conditions: BankConditions


def select_conditions(
    history: Iterable[BankConditions],
    on_date: date,
    bank_code: str | None = None,
) -> BankConditions | None:
    """
    Pick the grid in force on ``on_date``: effective on or before the date and
    not yet expired. Among several, the most recently effective one wins.
    """
    selected: BankConditions | None = None
    for conditions in history:
        if bank_code is not None and conditions.bank_code != bank_code:
            continue
        if conditions.effective_date > on_date:
            continue
        if conditions.expiration_date is not None and conditions.expiration_date <= on_date:
            continue
        if selected is None or conditions.effective_date > selected.effective_date:
            selected = conditions
    return selected


def expected_fee(schedule: FeeSchedule, base_amount: float | None = None) -> float:
    if schedule.type == "percentage":
        rate = schedule.percentage or 0.0
        if base_amount is None or rate <= 0:
            return schedule.amount or schedule.min_amount or 0.0
        value = abs(base_amount) * rate
        if schedule.min_amount is not None:
            value = max(value, schedule.min_amount)
        if schedule.max_amount is not None:
            value = min(value, schedule.max_amount)
        return value

    if schedule.type == "tiered" and schedule.tiers and base_amount is not None:
        magnitude = abs(base_amount)
        tiers = sorted(schedule.tiers, key=lambda tier: float("inf") if tier.up_to is None else tier.up_to)
        for tier in tiers:
            if tier.up_to is None or magnitude <= tier.up_to:
                return tier.amount
        return tiers[-1].amount

    return schedule.amount


def _code_tokens(value: str) -> list[str]:
    return [token for token in _CODE_SPLIT_RE.split(fold_text(value).upper()) if token]


def _alias_matches(tokens: Sequence[str], aliases: Sequence[str], prefix: bool) -> bool:
    for alias in aliases:
        for token in tokens:
            if token == alias or (prefix and len(alias) >= 4 and token.startswith(alias)):
                return True
    return False


class ServiceIndex:
    """Non-fee transactions per account, sorted by date for window lookups."""

    def __init__(self, resolver: "TariffResolver", transactions: Iterable[Transaction]):
        grouped: dict[str, list[tuple[date, str, Transaction, str]]] = defaultdict(list)
        for transaction in transactions:
            if resolver.classify(transaction).is_fee:
                continue
            folded = fold_text(transaction.description)
            if not has_service_keyword(folded):
                continue
            grouped[transaction.account_number].append((transaction.date, transaction.id, transaction, folded))
        self._by_account = {account: sorted(rows, key=lambda row: (row[0], row[1])) for account, rows in grouped.items()}
        self._dates = {account: [row[0] for row in rows] for account, rows in self._by_account.items()}

    def around(self, account_number: str, on_date: date, window_days: int) -> list[tuple[Transaction, str]]:
        rows = self._by_account.get(account_number)
        if not rows:
            return []
        dates = self._dates[account_number]
        low = bisect.bisect_left(dates, on_date - timedelta(days=window_days))
        high = bisect.bisect_right(dates, on_date + timedelta(days=window_days))
        return [(row[2], row[3]) for row in rows[low:high]]


class TariffResolver:
    def __init__(self, conditions: Sequence[BankConditions]):
        self.conditions = list(conditions)

    def select_conditions(self, on_date: date, bank_code: str | None = None) -> BankConditions | None:
        known_codes = {conditions.bank_code for conditions in self.conditions}
        if bank_code not in known_codes and len(known_codes) == 1:
            # A single-bank history applies whatever code the statement carries.
            bank_code = None
        return select_conditions(self.conditions, on_date, bank_code)

    def classify(self, transaction: Transaction) -> FeeClassification:
        if transaction.amount >= 0:
            return FeeClassification(is_fee=False)

        folded = fold_text(transaction.description)
        explicit = transaction.type in (TransactionType.FEE, TransactionType.INTEREST)
        if not explicit and not has_fee_keyword(folded):
            return FeeClassification(is_fee=False)

        rule = match_fee_rule(folded)
        if transaction.type == TransactionType.INTEREST and rule.code == "OTHER":
            rule = RULES_BY_CODE["OVERDRAFT"]
        return FeeClassification(is_fee=True, rule=rule)

    def resolve_fee(self, transaction: Transaction, rule: FeeRule | None = None) -> ResolvedFee | None:
        if rule is None:
            rule = self.classify(transaction).rule
            if rule is None:
                return None

        conditions = self.select_conditions(transaction.date, transaction.bank_code)
        if conditions is None or not conditions.fees:
            return None

        schedule = self._match_schedule(conditions.fees, rule, transaction.description)
        if schedule is None:
            logger.debug("[TARIFF] No schedule for %s (%s) in grid %s", transaction.id, rule.code, conditions.id)
            return None
        return ResolvedFee(schedule=schedule, conditions=conditions)

    def _match_schedule(self, fees: Sequence[FeeSchedule], rule: FeeRule, description: str) -> FeeSchedule | None:
        for schedule in fees:
            if schedule.code.upper() == rule.code:
                return schedule
        if rule.schedule_aliases:
            for prefix in (False, True):
                for schedule in fees:
                    if _alias_matches(_code_tokens(schedule.code), rule.schedule_aliases, prefix):
                        return schedule
                for schedule in fees:
                    if _alias_matches(_code_tokens(schedule.name), rule.schedule_aliases, prefix):
                        return schedule

        choices = {index: fold_text(schedule.name) for index, schedule in enumerate(fees)}
        match = process.extractOne(
            fold_text(description),
            choices,
            scorer=fuzz.token_sort_ratio,
            score_cutoff=FUZZY_SCHEDULE_CUTOFF,
        )
        if match:
            _, score, index = match
            logger.debug("[TARIFF] Fuzzy schedule match '%s' (score %.1f)", fees[index].name, score)
            return fees[index]
        return None

    def resolve_rate(self, on_date: date, bank_code: str | None, rate_type: str) -> ResolvedRate | None:
        """
        ``overdraft`` rates stand in for ``authorized`` ones, and the reverse.
        """
        conditions = self.select_conditions(on_date, bank_code)
        if conditions is None:
            return None
        accepted = {"authorized", "overdraft"} if rate_type in {"authorized", "overdraft"} else {rate_type}
        for rate in conditions.interest_rates:
            if rate.type in accepted:
                return ResolvedRate(rate=rate, conditions=conditions)
        return None

    def build_service_index(self, transactions: Iterable[Transaction]) -> ServiceIndex:
        return ServiceIndex(self, transactions)

    def find_related_service(
        self,
        fee: Transaction,
        rule: FeeRule,
        index: ServiceIndex,
        window_days: int,
    ) -> Transaction | None:
        """Nearest service transaction on the fee's account that the fee plausibly pays for."""
        fee_keywords = meaningful_keywords(fee.description)
        matches: list[tuple[int, str, Transaction]] = []
        for candidate, folded in index.around(fee.account_number, fee.date, window_days):
            if candidate.id == fee.id:
                continue
            if rule.service_keywords is not None:
                words = set(_WORD_RE.findall(folded))
                related = any(keyword in words for keyword in rule.service_keywords)
            else:
                related = (
                    token_similarity(fee.description, candidate.description) > RELATED_SERVICE_SIMILARITY
                    or bool(fee_keywords & meaningful_keywords(candidate.description))
                )
            if related:
                matches.append((abs((candidate.date - fee.date).days), candidate.id, candidate))
        if not matches:
            return None
        return min(matches, key=lambda item: (item[0], item[1]))[2]

    def currency_for(self, transaction: Transaction) -> str:
        conditions = self.select_conditions(transaction.date, transaction.bank_code)
        return conditions.currency if conditions else DEFAULT_CURRENCY
