"""
Contradiction detection across the whole claim ledger.

Claims are grouped by (type, subject key) and compared pairwise only
within a group. Each claim type maps to exactly one comparison rule:

- duration   -> numerical:    relative difference of day-normalised values
- startDate  -> temporal:     days between dates vs. tolerance window
- requirement-> polarity:     opposing yes/no assertions
- resource   -> definitional: token overlap of descriptions (never high)
- dependency -> not compared

Detection must run after every task's claims are in the ledger; running it
on a partial ledger misses cross-task conflicts.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from itertools import combinations
from typing import Any

from claimcheck.claims.ledger import ClaimLedger
from claimcheck.claims.models import Claim, ClaimType, Contradiction, ContradictionType, Severity
from claimcheck.errors import ClaimScoringError
from claimcheck.utils.config import ContradictionConfig
from claimcheck.utils.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Working days per unit; an 8-hour working day
DURATION_UNIT_DAYS: dict[str, float] = {
    "hour": 1 / 8,
    "hours": 1 / 8,
    "hr": 1 / 8,
    "hrs": 1 / 8,
    "h": 1 / 8,
    "day": 1.0,
    "days": 1.0,
    "d": 1.0,
    "week": 7.0,
    "weeks": 7.0,
    "wk": 7.0,
    "wks": 7.0,
    "w": 7.0,
    "month": 30.0,
    "months": 30.0,
    "mo": 30.0,
    "quarter": 91.0,
    "quarters": 91.0,
    "q": 91.0,
    "year": 365.0,
    "years": 365.0,
    "yr": 365.0,
    "yrs": 365.0,
    "y": 365.0,
}

DEFAULT_DURATION_UNIT = "days"

TRUE_WORDS = frozenset({"yes", "true", "required", "y", "1"})
FALSE_WORDS = frozenset({"no", "false", "not required", "n", "0", "none"})

_DURATION_TEXT = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$")
_TOKEN = re.compile(r"\w+")


# Outcome of one comparison: severity, description and detail fields
Outcome = tuple[Severity, str, dict[str, Any]]


@dataclass(frozen=True)
class ComparisonRule:
    """How one claim type is parsed and compared."""

    kind: ContradictionType
    parse: Callable[[Claim], Any]
    compare: Callable[[Any, Any], Outcome | None]


# =============================================================================
# Value parsing
# =============================================================================


def parse_duration_days(claim: Claim) -> float:
    """Normalise a duration claim to days.

    Accepts a number (unit from ``claim.unit``, default days) or text such
    as "10 days" / "2w".

    Raises:
        ClaimScoringError: Non-numeric value or unknown unit.
    """
    value = claim.value
    unit = claim.unit
    if isinstance(value, bool):
        raise ClaimScoringError(claim.claim_id, f"duration is not numeric: {value!r}")
    if isinstance(value, (int, float)):
        amount = float(value)
    elif isinstance(value, str):
        match = _DURATION_TEXT.match(value)
        if match is None:
            raise ClaimScoringError(claim.claim_id, f"duration is not numeric: {value!r}")
        amount = float(match.group(1))
        unit = match.group(2) or unit
    else:
        raise ClaimScoringError(claim.claim_id, f"duration is not numeric: {value!r}")

    unit_key = (unit or DEFAULT_DURATION_UNIT).strip().lower()
    factor = DURATION_UNIT_DAYS.get(unit_key)
    if factor is None:
        raise ClaimScoringError(claim.claim_id, f"unknown duration unit: {unit!r}")
    return amount * factor


def parse_date(claim: Claim) -> date:
    """Parse a start date claim (ISO 8601 date or datetime)."""
    value = claim.value
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ClaimScoringError(claim.claim_id, f"start date is not a date: {value!r}")
    text = value.strip()
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError as e:
        raise ClaimScoringError(claim.claim_id, f"unparseable date: {value!r}") from e


def parse_polarity(claim: Claim) -> bool:
    """Coerce a requirement claim into a boolean assertion."""
    value = claim.value
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = " ".join(value.lower().split())
        if word in TRUE_WORDS:
            return True
        if word in FALSE_WORDS:
            return False
    raise ClaimScoringError(claim.claim_id, f"not a yes/no assertion: {value!r}")


def parse_tokens(claim: Claim) -> frozenset[str]:
    """Lowercased word tokens of a descriptive claim."""
    value = claim.value
    if isinstance(value, list):
        text = " ".join(str(v) for v in value)
    elif isinstance(value, (str, int, float)):
        text = str(value)
    else:
        raise ClaimScoringError(claim.claim_id, f"not a description: {value!r}")
    return frozenset(_TOKEN.findall(text.lower()))


def jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    """Token-set Jaccard similarity (1.0 for two empty sets)."""
    union = a | b
    if not union:
        return 1.0
    return len(a & b) / len(union)


def contradiction_id(claim_a_id: str, claim_b_id: str) -> str:
    """Order-independent contradiction id."""
    first, second = sorted((claim_a_id, claim_b_id))
    return f"contra_{first}__{second}"


# =============================================================================
# Detector
# =============================================================================


class ContradictionDetector:
    """
    Finds conflicting claims that share a type and subject key.

    Severity bands come from ContradictionConfig and are fixed for the
    detector's lifetime.
    """

    def __init__(self, config: ContradictionConfig):
        self._config = config
        self._rules: dict[ClaimType, ComparisonRule | None] = {
            ClaimType.DURATION: ComparisonRule(
                ContradictionType.NUMERICAL, parse_duration_days, self.compare_numerical
            ),
            ClaimType.START_DATE: ComparisonRule(
                ContradictionType.TEMPORAL, parse_date, self.compare_temporal
            ),
            ClaimType.REQUIREMENT: ComparisonRule(
                ContradictionType.POLARITY, parse_polarity, self.compare_polarity
            ),
            ClaimType.RESOURCE: ComparisonRule(
                ContradictionType.DEFINITIONAL, parse_tokens, self.compare_definitional
            ),
            ClaimType.DEPENDENCY: None,
        }
        missing = set(ClaimType) - set(self._rules)
        if missing:
            raise RuntimeError(f"No comparison rule for claim types: {sorted(missing)}")

    def rule_for(self, claim_type: ClaimType) -> ComparisonRule | None:
        return self._rules[claim_type]

    # ------------------------------------------------------------------
    # Comparisons
    # ------------------------------------------------------------------

    def compare_numerical(self, a: float, b: float) -> Outcome | None:
        scale = max(abs(a), abs(b))
        if scale == 0:
            return None
        # Rounded so equal ratios land in the same band at any magnitude
        diff = round(abs(a - b) / scale, 9)
        if diff < self._config.numerical_noise:
            return None
        severity = Severity.MEDIUM if diff <= self._config.numerical_high else Severity.HIGH
        description = f"Durations differ by {diff:.0%} ({a:g} vs {b:g} days)"
        return severity, description, {"relativeDifference": round(diff, 4)}

    def compare_temporal(self, a: date, b: date) -> Outcome | None:
        days = abs((a - b).days)
        if days == 0:
            return None
        tolerance = self._config.temporal_tolerance_days
        severity = Severity.MEDIUM if days <= tolerance else Severity.HIGH
        description = f"Start dates {days} days apart ({a.isoformat()} vs {b.isoformat()})"
        return severity, description, {"daysApart": days, "toleranceDays": tolerance}

    def compare_polarity(self, a: bool, b: bool) -> Outcome | None:
        if a == b:
            return None
        return Severity.HIGH, "Opposing requirement assertions", {}

    def compare_definitional(self, a: frozenset[str], b: frozenset[str]) -> Outcome | None:
        similarity = jaccard(a, b)
        if similarity >= self._config.definitional_similarity_threshold:
            return None
        severity = Severity.MEDIUM if similarity == 0 else Severity.LOW
        description = f"Dissimilar descriptions for the same label (similarity {similarity:.2f})"
        return severity, description, {"similarity": round(similarity, 4)}

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(self, ledger: ClaimLedger) -> list[Contradiction]:
        """
        Compare every comparable claim pair in the ledger.

        New contradictions are appended to the ledger. Claims whose value
        cannot be parsed are logged and left out of their group.

        Returns:
            Contradictions added by this call, in group order.
        """
        found: list[Contradiction] = []
        skipped = 0

        for (claim_type, subject), claims in ledger.groups().items():
            rule = self._rules[claim_type]
            if rule is None or len(claims) < 2:
                continue

            parsed: list[tuple[Claim, Any]] = []
            for claim in claims:
                try:
                    parsed.append((claim, rule.parse(claim)))
                except ClaimScoringError as e:
                    skipped += 1
                    logger.warning(
                        "Claim skipped for contradiction check",
                        claim_id=e.claim_id,
                        reason=e.details.get("reason"),
                    )

            for (claim_a, value_a), (claim_b, value_b) in combinations(parsed, 2):
                outcome = rule.compare(value_a, value_b)
                if outcome is None:
                    continue
                severity, description, details = outcome
                first, second = sorted((claim_a.claim_id, claim_b.claim_id))
                contradiction = Contradiction(
                    contradiction_id=contradiction_id(first, second),
                    contradiction_type=rule.kind,
                    severity=severity,
                    claim_a_id=first,
                    claim_b_id=second,
                    subject=subject,
                    description=description,
                    details=details,
                )
                if ledger.add_contradiction(contradiction):
                    found.append(contradiction)

        logger.info(
            "Contradiction detection complete",
            claims=len(ledger),
            found=len(found),
            high=sum(1 for c in found if c.severity == Severity.HIGH),
            skipped=skipped,
        )
        return found
