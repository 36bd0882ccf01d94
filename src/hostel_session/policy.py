"""
Degraded-resource policy.

Some resources may legitimately be unavailable to a role. An authorization
failure on them resolves to a neutral value instead of entering the refresh
path or ending the session.
"""

import copy
from dataclasses import dataclass
from typing import Any, Iterable, Optional


# Neutral value names accepted in configuration
NEUTRAL_VALUES = {
    "empty_list": [],
    "empty_object": {},
    "null": None,
}


@dataclass(frozen=True)
class DegradedRule:
    """Maps a URL path fragment to the neutral value served on 401/403."""
    fragment: str
    neutral: str = "empty_list"

    def __post_init__(self):
        if not self.fragment:
            raise ValueError("Degraded rule needs a non-empty path fragment")
        if self.neutral not in NEUTRAL_VALUES:
            raise ValueError(f"Unknown neutral value: {self.neutral}")

    def matches(self, path: str) -> bool:
        return self.fragment in path.split("?", 1)[0]

    def neutral_value(self) -> Any:
        # Copy so callers never share a mutable default
        return copy.deepcopy(NEUTRAL_VALUES[self.neutral])


# Optional per-tenant time periods: the active one is a single record
DEFAULT_RULES = (
    DegradedRule("/semesters/active", "null"),
    DegradedRule("/semesters", "empty_list"),
)


class DegradedResourcePolicy:
    """Immutable set of degraded-resource rules."""

    def __init__(self, rules: Optional[Iterable[DegradedRule]] = None):
        rules = DEFAULT_RULES if rules is None else tuple(rules)
        # Most specific fragment first
        self._rules = tuple(sorted(rules, key=lambda r: len(r.fragment), reverse=True))

    @property
    def rules(self) -> tuple[DegradedRule, ...]:
        return self._rules

    def match(self, path: str) -> Optional[DegradedRule]:
        """Return the rule covering ``path``, if any."""
        for rule in self._rules:
            if rule.matches(path):
                return rule
        return None

    def applies(self, path: str, status: int) -> bool:
        """True when a failure with ``status`` on ``path`` should degrade."""
        return status in (401, 403) and self.match(path) is not None

    @classmethod
    def from_config(cls, entries: dict[str, str]) -> "DegradedResourcePolicy":
        """Build a policy from ``{fragment: neutral_name}`` configuration."""
        return cls(DegradedRule(fragment, neutral) for fragment, neutral in entries.items())
