"""
Deterministic keyword categorization.

Every category is scored independently against ``"{title} {title} {excerpt}"``
(the title counts twice). The highest score wins, ties go to the category that
comes first in the rule order, and a zero score falls back to the default
category, so ``categorize`` is total.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import yaml

import shared.config as shared_config
from shared.app_logging.logger import get_logger

logger = get_logger("ingestor.categorize")

DEFAULT_RULES_PATH = Path(shared_config.__file__).with_name("category_rules.yaml")


@dataclass(frozen=True)
class WeightedKeyword:
    term: str
    weight: int
    strong: bool = False


@dataclass(frozen=True)
class CategoryRule:
    name: str
    keywords: Tuple[WeightedKeyword, ...]


@dataclass
class CategoryDecision:
    category: str
    scores: List[Tuple[str, int]]
    matched_keywords: Dict[str, List[str]] = field(default_factory=dict)


class Categorizer:
    def __init__(self, rules: Sequence[CategoryRule], default_category: str):
        if not rules:
            raise ValueError("Categorizer needs at least one category rule")
        self.rules = tuple(
            CategoryRule(rule.name, tuple(
                WeightedKeyword(kw.term.lower(), kw.weight, kw.strong) for kw in rule.keywords
            ))
            for rule in rules
        )
        self.default_category = default_category

    def categories(self) -> List[str]:
        names = [rule.name for rule in self.rules]
        if self.default_category not in names:
            names.append(self.default_category)
        return names

    @staticmethod
    def _text(title: Optional[str], excerpt: Optional[str]) -> str:
        title = title or ""
        return f"{title} {title} {excerpt or ''}".lower()

    def _score(self, text: str, rule: CategoryRule) -> int:
        return sum(kw.weight for kw in rule.keywords if kw.term in text)

    def _pick(self, scores: Sequence[Tuple[str, int]]) -> str:
        best_name, best_score = self.default_category, 0
        for name, score in scores:
            if score > best_score:
                best_name, best_score = name, score
        return best_name

    def categorize(self, title: Optional[str], excerpt: Optional[str] = None) -> str:
        text = self._text(title, excerpt)
        return self._pick([(rule.name, self._score(text, rule)) for rule in self.rules])

    def categorize_with_details(self, title: Optional[str], excerpt: Optional[str] = None) -> CategoryDecision:
        text = self._text(title, excerpt)
        scores = []
        matched: Dict[str, List[str]] = {}
        for rule in self.rules:
            hits = [kw for kw in rule.keywords if kw.term in text]
            scores.append((rule.name, sum(kw.weight for kw in hits)))
            if hits:
                matched[rule.name] = [f"[STRONG] {kw.term}" if kw.strong else kw.term for kw in hits]

        category = self._pick(scores)
        ranked = sorted(scores, key=lambda pair: pair[1], reverse=True)
        return CategoryDecision(category=category, scores=ranked, matched_keywords=matched)


def load_category_rules(path: Optional[Union[str, Path]] = None) -> Categorizer:
    """Build a Categorizer from a rules file (see shared/config/category_rules.yaml)."""
    rules_path = Path(path) if path else DEFAULT_RULES_PATH
    with open(rules_path, encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    weights = data.get("weights") or {}
    strong_weight = int(weights.get("strong", 3))
    regular_weight = int(weights.get("regular", 1))

    rules = []
    for entry in data.get("categories") or []:
        keywords = [WeightedKeyword(term, strong_weight, True) for term in entry.get("strong") or []]
        keywords += [WeightedKeyword(term, regular_weight) for term in entry.get("regular") or []]
        rules.append(CategoryRule(entry["name"], tuple(keywords)))

    default_category = data.get("default_category") or (rules[-1].name if rules else "")
    logger.debug(f"Loaded {len(rules)} category rules from {rules_path}")
    return Categorizer(rules, default_category)
