"""
Right matching and effect evaluation.

A right is a free-form, case-sensitive string such as ``admin_panel__users:write``.
A granted right may contain ``*`` wildcards; each ``*`` matches any run of
characters (including none) and the pattern must cover the whole required
right. Evaluation is deny-overrides-allow with no notion of specificity:
a single matching deny wins over any number of matching allows.
"""
import enum
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Iterable, List, Optional


class DecisionReason(str, enum.Enum):
    """Why a decision came out the way it did."""
    ALLOWED = "allowed"
    DENIED = "denied"
    NO_MATCH = "no_match"
    INVALID_REQUIRED_RIGHT = "invalid_required_right"


@dataclass(frozen=True)
class Evaluation:
    """Outcome of evaluating a set of (right, effect) entries."""
    allowed: bool
    reason: DecisionReason
    matched: List[Any] = field(default_factory=list)


def normalize_right(value: Optional[str]) -> str:
    """Trim a right; ``None`` becomes the empty string."""
    if value is None:
        return ""
    return str(value).strip()


@lru_cache(maxsize=1024)
def _compile_pattern(pattern: str) -> "re.Pattern[str]":
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile(".*".join(parts), re.DOTALL)


def matches(required_right: Optional[str], granted_pattern: Optional[str]) -> bool:
    """
    Check whether ``granted_pattern`` covers ``required_right``.

    Examples:
        matches("backoffice:dashboard:access", "backoffice:*")  -> True
        matches("users:manage", "backoffice:*")                 -> False
        matches("anything", "*")                                -> True
    """
    required = normalize_right(required_right)
    pattern = normalize_right(granted_pattern)
    if not required or not pattern:
        return False
    if required == pattern:
        return True
    if "*" not in pattern:
        return False
    return _compile_pattern(pattern).fullmatch(required) is not None


def _get(entry: Any, name: str) -> Any:
    if isinstance(entry, dict):
        return entry.get(name)
    return getattr(entry, name, None)


def entry_effect(entry: Any) -> str:
    """Effect of an entry as a plain string; anything but ``deny`` counts as allow."""
    effect = _get(entry, "effect")
    if isinstance(effect, enum.Enum):
        effect = effect.value
    return "deny" if normalize_right(effect) == "deny" else "allow"


def evaluate_effects(entries: Optional[Iterable[Any]], required_right: Optional[str]) -> Evaluation:
    """
    Decide ``required_right`` against grant-like entries.

    Entries may be mappings or objects exposing ``right`` and ``effect``.
    Entries with an empty right never match. The result depends only on the
    set of matching entries, not on their order.

    Returns:
        Evaluation with the deny matches when denied, the allow matches when
        allowed, and nothing otherwise.
    """
    required = normalize_right(required_right)
    if not required:
        return Evaluation(allowed=False, reason=DecisionReason.INVALID_REQUIRED_RIGHT)

    denies: List[Any] = []
    allows: List[Any] = []
    for entry in entries or ():
        if entry is None:
            continue
        right = normalize_right(_get(entry, "right"))
        if not right or not matches(required, right):
            continue
        if entry_effect(entry) == "deny":
            denies.append(entry)
        else:
            allows.append(entry)

    if denies:
        return Evaluation(allowed=False, reason=DecisionReason.DENIED, matched=denies)
    if allows:
        return Evaluation(allowed=True, reason=DecisionReason.ALLOWED, matched=allows)
    return Evaluation(allowed=False, reason=DecisionReason.NO_MATCH)
