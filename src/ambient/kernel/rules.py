from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Tuple

from ..contracts.v1 import Rule
from .globs import matches_any


@dataclass(frozen=True)
class RuleSet:
    """Rules ordered by descending priority; ties keep declaration order."""

    rules: Tuple[Rule, ...] = ()

    @classmethod
    def from_rules(cls, rules: Iterable[Rule]) -> "RuleSet":
        # sorted() is stable, so equal priorities stay in declaration order.
        return cls(tuple(sorted(rules, key=lambda r: -int(r.priority))))

    def with_rule(self, rule: Rule) -> "RuleSet":
        """Add or replace (by name) a rule; the order is recomputed."""
        out = [rule if r.name == rule.name else r for r in self.rules]
        if not any(r.name == rule.name for r in self.rules):
            out.append(rule)
        return RuleSet.from_rules(out)

    def enabled(self) -> List[Rule]:
        return [r for r in self.rules if r.enabled]

    def names(self) -> List[str]:
        return [r.name for r in self.rules]

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)


def rule_applies(rule: Rule, path: str) -> bool:
    if not rule.enabled:
        return False
    if not matches_any(path, rule.file_patterns):
        return False
    return not matches_any(path, rule.exclude_patterns)


def match_rules(path: str, ruleset: RuleSet) -> List[Rule]:
    """Every enabled rule that applies to `path`, in RuleSet order."""
    return [r for r in ruleset if rule_applies(r, path)]
