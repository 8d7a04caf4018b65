import re
import unicodedata
from dataclasses import dataclass

_WHITESPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"[a-z0-9]+")

# Words that say "this is a charge" without saying which service it pays for.
_NEUTRAL_WORDS = {"frais", "commission", "pour", "avec", "dans", "sur", "des", "les", "une"}


def fold_text(text: str) -> str:
    """Case-fold, strip accents and collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", text.casefold())
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _WHITESPACE_RE.sub(" ", stripped).strip()


@dataclass(frozen=True)
class FeeRule:
    code: str
    label: str
    pattern: re.Pattern[str]
    schedule_aliases: tuple[str, ...] = ()
    service_keywords: tuple[str, ...] | None = None
    periodic: bool = False

    def matches(self, folded: str) -> bool:
        return bool(self.pattern.search(folded))


FEE_KEYWORDS = re.compile(
    r"\b(frais|commissions?|agios|cotisations?|taxes?|redevances?|abonnements?"
    r"|fees?|charges?)\b"
)

SERVICE_KEYWORDS = re.compile(
    r"\b(virement|vir|retrait|depot|carte|cheque|transfer|transfert|paiement|achat|dab|gab|atm)\b"
)

# Evaluated in order; the first matching rule gives the fee code.
FEE_RULES: tuple[FeeRule, ...] = (
    FeeRule(
        code="OVERDRAFT",
        label="Overdraft interest",
        pattern=re.compile(r"\bagios\b|decouvert|interets?\s+debiteurs?"),
        schedule_aliases=("AGIOS", "DECOUVERT", "OVERDRAFT"),
        periodic=True,
    ),
    FeeRule(
        code="ACCOUNT_MAINTENANCE",
        label="Account maintenance",
        pattern=re.compile(r"tenue\s+(de\s+)?compte|gestion\s+(de\s+)?compte|frais\s+(de\s+)?compte\b"),
        schedule_aliases=("TDC", "TENUE", "COMPTE"),
        periodic=True,
    ),
    FeeRule(
        code="TRANSFER_INTERNATIONAL",
        label="International transfer",
        pattern=re.compile(r"virement\s+international|\bswift\b|transfer\w*\s+(etranger|international)"),
        schedule_aliases=("VIRI", "SWIFT", "TRANSFERI"),
        service_keywords=("swift", "virement", "transfert", "transfer"),
    ),
    FeeRule(
        code="TRANSFER_NATIONAL",
        label="Domestic transfer",
        pattern=re.compile(r"\bvirement\b|\bvir\b|\btransfer\w*"),
        schedule_aliases=("VIRN", "VIR", "TRANSFER"),
        service_keywords=("virement", "vir", "transfert", "transfer"),
    ),
    FeeRule(
        code="ATM",
        label="Cash withdrawal",
        pattern=re.compile(r"\bretrait\b|\bdab\b|\bgab\b|\batm\b|distributeur"),
        schedule_aliases=("RET", "DAB", "GAB", "ATM"),
        service_keywords=("retrait", "dab", "gab", "atm", "distributeur"),
    ),
    FeeRule(
        code="CARD_FEE",
        label="Card",
        pattern=re.compile(r"\bcarte\b|\bcard\b|\bcb\b|\bvisa\b|mastercard"),
        schedule_aliases=("CARTE", "CARD", "CB"),
        service_keywords=("carte", "card", "cb", "visa", "mastercard", "paiement", "achat"),
    ),
    FeeRule(
        code="CHECK",
        label="Cheque",
        pattern=re.compile(r"\bcheques?\b|chequier"),
        schedule_aliases=("CHQ", "CHEQUE"),
        service_keywords=("cheque", "cheques", "chequier", "remise"),
    ),
    FeeRule(
        code="SMS",
        label="SMS alerts",
        pattern=re.compile(r"\bsms\b|notification|alerte"),
        schedule_aliases=("SMS", "NOTIF"),
        periodic=True,
    ),
    FeeRule(
        code="STATEMENT",
        label="Statement",
        pattern=re.compile(r"\breleve\b|\bextrait\b|\bstatement\b"),
        schedule_aliases=("REL", "EXTRAIT", "STATEMENT"),
        periodic=True,
    ),
)

GENERIC_FEE_RULE = FeeRule(
    code="OTHER",
    label="Other fee",
    pattern=FEE_KEYWORDS,
)

RULES_BY_CODE: dict[str, FeeRule] = {rule.code: rule for rule in (*FEE_RULES, GENERIC_FEE_RULE)}


def has_fee_keyword(folded: str) -> bool:
    return bool(FEE_KEYWORDS.search(folded))


def has_service_keyword(folded: str) -> bool:
    return bool(SERVICE_KEYWORDS.search(folded))


def match_fee_rule(folded: str) -> FeeRule:
    for rule in FEE_RULES:
        if rule.matches(folded):
            return rule
    return GENERIC_FEE_RULE


def meaningful_keywords(text: str) -> set[str]:
    """Words longer than three letters that name something other than the charge itself."""
    return {
        word
        for word in _WORD_RE.findall(fold_text(text))
        if len(word) > 3 and word not in _NEUTRAL_WORDS and not FEE_KEYWORDS.fullmatch(word)
    }
