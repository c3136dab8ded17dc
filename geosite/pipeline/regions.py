"""Longitude-rule region classification."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from geosite.common.constants import UNCLASSIFIED
from geosite.common.errors import ConfigurationError
from geosite.pipeline.store import PointStore

PREDICATE_KINDS = ("lt", "le", "gt", "ge", "between", "always")


@dataclass(frozen=True)
class LongitudePredicate:
    kind: str
    low: float | None = None
    high: float | None = None

    def matches(self, longitude: float) -> bool:
        if self.kind == "lt":
            return longitude < self.high
        if self.kind == "le":
            return longitude <= self.high
        if self.kind == "gt":
            return longitude > self.low
        if self.kind == "ge":
            return longitude >= self.low
        if self.kind == "between":
            return self.low <= longitude <= self.high
        return True

    def describe(self) -> str:
        if self.kind == "lt":
            return f"lon < {self.high}"
        if self.kind == "le":
            return f"lon <= {self.high}"
        if self.kind == "gt":
            return f"lon > {self.low}"
        if self.kind == "ge":
            return f"lon >= {self.low}"
        if self.kind == "between":
            return f"{self.low} <= lon <= {self.high}"
        return "always"


@dataclass(frozen=True)
class RegionRule:
    label: str
    predicate: LongitudePredicate


@dataclass(frozen=True)
class RuleSet:
    name: str
    rules: tuple[RegionRule, ...]

    def labels(self) -> list[str]:
        out: list[str] = []
        for rule in self.rules:
            if rule.label not in out:
                out.append(rule.label)
        return out


@dataclass(frozen=True)
class ClassificationReport:
    rule_set: str
    counts: Mapping[str, int]

    def __post_init__(self) -> None:
        object.__setattr__(self, "counts", MappingProxyType(dict(self.counts)))

    def to_dict(self) -> dict[str, Any]:
        return {"rule_set": self.rule_set, "counts": dict(self.counts)}


def below(high: float) -> LongitudePredicate:
    return LongitudePredicate("lt", high=high)


def above(low: float) -> LongitudePredicate:
    return LongitudePredicate("gt", low=low)


def between(low: float, high: float) -> LongitudePredicate:
    return LongitudePredicate("between", low=low, high=high)


ALWAYS = LongitudePredicate("always")

THREE_WAY = RuleSet(
    name="three_way",
    rules=(
        RegionRule("Western", below(-100.0)),
        RegionRule("Central", between(-100.0, -85.0)),
        RegionRule("Eastern", above(-85.0)),
    ),
)

TWO_WAY = RuleSet(
    name="two_way",
    rules=(
        RegionRule("Eastern", above(-95.0)),
        RegionRule("Western", ALWAYS),
    ),
)

BUILTIN_RULE_SETS = {THREE_WAY.name: THREE_WAY, TWO_WAY.name: TWO_WAY}


def _bound(raw: dict, key: str, ctx: str) -> float:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{ctx}: '{key}' must be a number", parameter=ctx)
    return float(value)


def parse_predicate(raw: Any, ctx: str) -> LongitudePredicate:
    """Build a predicate from a one-key mapping such as ``{"lt": -100}``."""
    if raw == "always" or raw == {"always": True}:
        return ALWAYS
    if not isinstance(raw, dict) or len(raw) != 1:
        raise ConfigurationError(f"{ctx}: predicate must be a single-key mapping", parameter=ctx)
    kind, value = next(iter(raw.items()))
    if kind not in PREDICATE_KINDS:
        raise ConfigurationError(f"{ctx}: unknown predicate kind '{kind}'", parameter=ctx)
    if kind in ("lt", "le"):
        return LongitudePredicate(kind, high=_bound(raw, kind, ctx))
    if kind in ("gt", "ge"):
        return LongitudePredicate(kind, low=_bound(raw, kind, ctx))
    if kind == "between":
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise ConfigurationError(f"{ctx}: 'between' needs [low, high]", parameter=ctx)
        low = _bound({"low": value[0]}, "low", ctx)
        high = _bound({"high": value[1]}, "high", ctx)
        if low > high:
            raise ConfigurationError(f"{ctx}: 'between' low {low} exceeds high {high}", parameter=ctx)
        return LongitudePredicate("between", low=low, high=high)
    return ALWAYS


def parse_rule_set(name: str, rules: Any) -> RuleSet:
    if not isinstance(rules, list) or not rules:
        raise ConfigurationError(f"Rule set '{name}' must be a non-empty list", parameter=f"regions.rule_sets.{name}")
    parsed: list[RegionRule] = []
    for idx, rule in enumerate(rules):
        ctx = f"regions.rule_sets.{name}[{idx}]"
        if not isinstance(rule, dict):
            raise ConfigurationError(f"{ctx}: rule must be a mapping", parameter=ctx)
        label = rule.get("label")
        if not isinstance(label, str) or not label.strip():
            raise ConfigurationError(f"{ctx}: label must be a non-empty string", parameter=ctx)
        parsed.append(RegionRule(label=label.strip(), predicate=parse_predicate(rule.get("when", "always"), ctx)))
    return RuleSet(name=name, rules=tuple(parsed))


def validate_rule_set(rule_set: RuleSet) -> RuleSet:
    if not rule_set.rules:
        raise ConfigurationError(f"Rule set '{rule_set.name}' has no rules", parameter="ruleSet")
    for idx, rule in enumerate(rule_set.rules):
        ctx = f"{rule_set.name}[{idx}]"
        if not rule.label.strip():
            raise ConfigurationError(f"{ctx}: blank label", parameter="ruleSet")
        predicate = rule.predicate
        if predicate.kind not in PREDICATE_KINDS:
            raise ConfigurationError(f"{ctx}: unknown predicate kind '{predicate.kind}'", parameter="ruleSet")
        if predicate.kind in ("lt", "le", "between") and predicate.high is None:
            raise ConfigurationError(f"{ctx}: missing upper bound", parameter="ruleSet")
        if predicate.kind in ("gt", "ge", "between") and predicate.low is None:
            raise ConfigurationError(f"{ctx}: missing lower bound", parameter="ruleSet")
        if predicate.kind == "between" and predicate.low > predicate.high:
            raise ConfigurationError(f"{ctx}: low bound exceeds high bound", parameter="ruleSet")
    return rule_set


def classify_longitude(longitude: float, rule_set: RuleSet) -> str:
    for rule in rule_set.rules:
        if rule.predicate.matches(longitude):
            return rule.label
    return UNCLASSIFIED


def classify_points(points: Iterable, rule_set: RuleSet) -> dict[str, str]:
    return {point.id: classify_longitude(point.longitude, rule_set) for point in points}


def classify(store: PointStore, rule_set: RuleSet = THREE_WAY) -> ClassificationReport:
    validate_rule_set(rule_set)
    regions = classify_points(store.all(), rule_set)
    store.commit("region", regions)

    counts = Counter(regions.values())
    ordered = {label: counts.get(label, 0) for label in rule_set.labels()}
    if counts.get(UNCLASSIFIED):
        ordered[UNCLASSIFIED] = counts[UNCLASSIFIED]
    return ClassificationReport(rule_set=rule_set.name, counts=ordered)
