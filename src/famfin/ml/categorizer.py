"""Heuristic transaction categorizer.

Layers, in precedence order: user rules, category keywords, the built-in keyword
dictionary, historical learning, and fuzzy matching against category names as a
last resort. Every layer contributes candidates; the most confident wins.
"""

import logging
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from ..core.config import CategorizerConfig, resolve_config
from ..core.models import (
    AlternativePrediction,
    Category,
    CategoryPrediction,
    CategoryRule,
    LearningPattern,
    RuleSuggestion,
    Transaction,
)
from .text import TextNormalizer, are_similar, dice_similarity, matches_pattern

logger = logging.getLogger(__name__)


class Describable(Protocol):
    id: str
    description: str | None


@dataclass(frozen=True)
class MatchResult:
    category: Category
    confidence: float
    match_type: str  # rule, keyword, dictionary, history or fuzzy
    matched: str | None = None


class TransactionCategorizer:
    """Predict categories for free-text transaction descriptions."""

    def __init__(self, config: CategorizerConfig | Mapping[str, Any] | None = None):
        self.config = resolve_config(CategorizerConfig, config)
        self.normalizer = TextNormalizer()

    def predict(
        self,
        description: str | None,
        categories: Sequence[Category],
        history: Sequence[Transaction] = (),
        rules: Sequence[CategoryRule] = (),
    ) -> CategoryPrediction | None:
        """Predict the category of a description, or None when nothing matches."""
        text = self.normalizer.normalize(description)
        if not text:
            return None

        by_id = {category.id: category for category in categories}
        matches: list[MatchResult] = []

        rule_match = self._match_rules(text, rules, by_id)
        if rule_match:
            matches.append(rule_match)

        matches.extend(self._match_category_keywords(text, categories))
        matched_ids = {match.category.id for match in matches}
        matches.extend(self._match_default_keywords(text, categories, matched_ids))

        history_match = self._match_history(text, history, by_id)
        if history_match:
            matches.append(history_match)

        if not matches:
            fuzzy_match = self._match_fuzzy(text, categories)
            if fuzzy_match:
                matches.append(fuzzy_match)

        if not matches:
            return None

        # Stable sort keeps precedence order between equally confident layers
        matches.sort(key=lambda m: m.confidence, reverse=True)
        best = matches[0]
        runner_up = next((m for m in matches[1:] if m.category.id != best.category.id), None)

        logger.debug(
            "Predicted %r for %r via %s (%.2f)", best.category.name, text, best.match_type, best.confidence
        )

        return CategoryPrediction(
            category_id=best.category.id,
            category_name=best.category.name,
            confidence=best.confidence,
            alternative=AlternativePrediction(
                category_id=runner_up.category.id,
                category_name=runner_up.category.name,
                confidence=runner_up.confidence,
            )
            if runner_up
            else None,
        )

    def batch_categorize(
        self,
        items: Iterable[Describable],
        categories: Sequence[Category],
        history: Sequence[Transaction] = (),
        rules: Sequence[CategoryRule] = (),
    ) -> dict[str, CategoryPrediction]:
        """Predict categories for many items, keyed by item id; unmatched items are omitted."""
        results = {}
        for item in items:
            prediction = self.predict(item.description, categories, history, rules)
            if prediction:
                results[item.id] = prediction
        return results

    def _match_rules(
        self, text: str, rules: Sequence[CategoryRule], by_id: dict[str, Category]
    ) -> MatchResult | None:
        """First matching rule by descending priority; rules are authoritative."""
        for rule in sorted(rules, key=lambda r: r.priority, reverse=True):
            pattern = rule.pattern.lower().replace("ё", "е")
            if not matches_pattern(text, pattern):
                continue
            category = by_id.get(rule.category_id)
            if category:
                return MatchResult(category, self.config.rule_confidence, "rule", rule.pattern)
        return None

    def _match_category_keywords(self, text: str, categories: Sequence[Category]) -> list[MatchResult]:
        matches = []
        for category in categories:
            for keyword in category.keywords:
                normalized = self.normalizer.normalize(keyword)
                if normalized and normalized in text:
                    matches.append(MatchResult(category, self.config.category_keyword_confidence, "keyword", keyword))
                    break
        return matches

    def _match_default_keywords(
        self, text: str, categories: Sequence[Category], matched_ids: set[str]
    ) -> list[MatchResult]:
        by_name = {}
        for category in categories:
            by_name.setdefault(self.normalizer.normalize(category.name), category)

        matches = []
        for category_name, keywords in self.config.default_keywords:
            keyword = next(
                (k for k in keywords if (normalized := self.normalizer.normalize(k)) and normalized in text),
                None,
            )
            if keyword is None:
                continue
            category = by_name.get(self.normalizer.normalize(category_name))
            if category and category.id not in matched_ids:
                matches.append(MatchResult(category, self.config.default_keyword_confidence, "dictionary", keyword))
                matched_ids.add(category.id)
        return matches

    def _match_history(
        self, text: str, history: Sequence[Transaction], by_id: dict[str, Category]
    ) -> MatchResult | None:
        """Most common category among past transactions with similar descriptions."""
        counts: Counter[str] = Counter()
        for txn in history:
            if not txn.description or not txn.category_id:
                continue
            normalized = self.normalizer.normalize(txn.description)
            if are_similar(text, normalized, self.config.history_similarity_threshold):
                counts[txn.category_id] += 1

        if not counts:
            return None

        category_id, count = counts.most_common(1)[0]
        if count < self.config.history_min_count:
            return None

        category = by_id.get(category_id)
        if not category:
            return None

        total = sum(counts.values())
        confidence = min(
            self.config.history_max_confidence,
            self.config.history_base_confidence + (count / total) * self.config.history_confidence_span,
        )
        return MatchResult(category, confidence, "history")

    def _match_fuzzy(self, text: str, categories: Sequence[Category]) -> MatchResult | None:
        best: Category | None = None
        best_score = 0.0
        for category in categories:
            score = dice_similarity(text, self.normalizer.normalize(category.name))
            if score > self.config.fuzzy_threshold and score > best_score:
                best, best_score = category, score

        if best is None:
            return None
        return MatchResult(best, best_score * self.config.fuzzy_confidence_factor, "fuzzy")

    def extract_learning_patterns(self, transactions: Iterable[Transaction]) -> list[LearningPattern]:
        """Collect recurring words and word pairs bound to the category they were first seen with."""
        patterns: dict[str, list] = {}

        def record(key: str, category_id: str) -> None:
            entry = patterns.setdefault(key, [category_id, 0])
            if entry[0] == category_id:
                entry[1] += 1

        for txn in transactions:
            if not txn.description or not txn.category_id:
                continue

            words = self.normalizer.tokens(txn.description, min_length=3)
            for i, word in enumerate(words):
                if len(word) >= self.config.pattern_min_token_length:
                    record(word, txn.category_id)
                if i < len(words) - 1:
                    record(f"{word} {words[i + 1]}", txn.category_id)

        learned = [
            LearningPattern(pattern=pattern, category_id=category_id, count=count)
            for pattern, (category_id, count) in patterns.items()
            if count >= self.config.pattern_min_occurrences
        ]
        learned.sort(key=lambda p: p.count, reverse=True)
        return learned

    def suggest_rules(
        self, uncategorized: Iterable[Transaction], categories: Sequence[Category]
    ) -> list[RuleSuggestion]:
        """Suggest rules for groups of uncategorized transactions sharing leading words."""
        grouped: dict[str, list[Transaction]] = defaultdict(list)
        for txn in uncategorized:
            if not txn.description:
                continue
            key = " ".join(self.normalizer.tokens(txn.description, min_length=4)[:2])
            if key:
                grouped[key].append(txn)

        suggestions = []
        for pattern, group in grouped.items():
            if len(group) < self.config.suggestion_min_group_size:
                continue

            prediction = self.predict(pattern, categories)
            if prediction and prediction.confidence > self.config.suggestion_min_confidence:
                suggestions.append(
                    RuleSuggestion(
                        pattern=pattern,
                        category_id=prediction.category_id,
                        category_name=prediction.category_name,
                        confidence=prediction.confidence,
                        transaction_count=len(group),
                    )
                )

        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        return suggestions

    def create_rule(self, category_id: str, pattern: str, priority: int = 0) -> CategoryRule:
        """Build a new rule with a normalized pattern, ready to be persisted."""
        return CategoryRule(
            category_id=category_id,
            pattern=self.normalizer.normalize(pattern) or pattern,
            priority=priority,
            match_count=0,
        )


def predict_category(
    description: str | None,
    categories: Sequence[Category],
    history: Sequence[Transaction] = (),
    rules: Sequence[CategoryRule] = (),
    config: CategorizerConfig | Mapping[str, Any] | None = None,
) -> CategoryPrediction | None:
    return TransactionCategorizer(config).predict(description, categories, history, rules)


def batch_categorize(
    items: Iterable[Describable],
    categories: Sequence[Category],
    history: Sequence[Transaction] = (),
    rules: Sequence[CategoryRule] = (),
    config: CategorizerConfig | Mapping[str, Any] | None = None,
) -> dict[str, CategoryPrediction]:
    return TransactionCategorizer(config).batch_categorize(items, categories, history, rules)


def extract_learning_patterns(
    transactions: Iterable[Transaction], config: CategorizerConfig | Mapping[str, Any] | None = None
) -> list[LearningPattern]:
    return TransactionCategorizer(config).extract_learning_patterns(transactions)


def suggest_rules(
    uncategorized: Iterable[Transaction],
    categories: Sequence[Category],
    config: CategorizerConfig | Mapping[str, Any] | None = None,
) -> list[RuleSuggestion]:
    return TransactionCategorizer(config).suggest_rules(uncategorized, categories)
