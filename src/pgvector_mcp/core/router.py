"""
Search mode routing.

Maps a raw query string to one of the concrete search modes. The heuristic
is an ordered list of routing rules evaluated top to bottom; the first rule
whose predicate matches decides the mode. Everything here is pure: no I/O,
no shared state.
"""

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from pgvector_mcp.models.search import QueryAnalysis, SearchMode

DEBUG_PREFIXES = ("test:", "debug:", "random:")
BENCHMARK_MARKERS = ("performance", "benchmark")

ENGLISH_INTERROGATIVES = ("how", "why", "what is")
FRENCH_INTERROGATIVES = ("comment", "pourquoi", "quelle est")

SHORT_QUERY_MAX_TOKENS = 2
LONG_QUERY_MIN_CHARS = 50
VERY_LONG_QUERY_MIN_CHARS = 100


@dataclass(frozen=True)
class QueryFeatures:
    """Normalized view of a query used by the routing predicates."""

    text: str
    token_count: int
    length: int
    has_interrogative: bool

    @property
    def is_debug_query(self) -> bool:
        return self.text.startswith(DEBUG_PREFIXES) or any(
            marker in self.text for marker in BENCHMARK_MARKERS
        )


@dataclass(frozen=True)
class RoutingRule:
    """One step of the routing heuristic."""

    name: str
    predicate: Callable[[QueryFeatures], bool]
    mode: SearchMode
    rationale: str
    suggestion: str

    def matches(self, features: QueryFeatures) -> bool:
        return self.predicate(features)


DEFAULT_RULES: tuple[RoutingRule, ...] = (
    RoutingRule(
        name="debug_query",
        predicate=lambda f: f.is_debug_query,
        mode=SearchMode.TEXT,
        rationale="Test or debug query detected",
        suggestion=(
            "Use pgvector_search with use_random_vector=true to exercise "
            "the vector path with random data"
        ),
    ),
    RoutingRule(
        name="short_query",
        predicate=lambda f: f.token_count <= SHORT_QUERY_MAX_TOKENS,
        mode=SearchMode.TEXT,
        rationale="Short query, full-text search is sufficient",
        suggestion="Use the 'text' mode for faster answers",
    ),
    RoutingRule(
        name="complex_query",
        predicate=lambda f: f.has_interrogative or f.length > LONG_QUERY_MIN_CHARS,
        mode=SearchMode.HYBRID,
        rationale="Natural-language question or long query",
        suggestion="The 'hybrid' mode combines lexical and semantic signal",
    ),
    RoutingRule(
        name="default",
        predicate=lambda f: True,
        mode=SearchMode.VECTOR,
        rationale="Medium-length descriptive query, semantic search fits best",
        suggestion="The 'vector' mode ranks by meaning rather than keywords",
    ),
)

# Advisory only, never changes the decision.
LONG_QUERY_NOTE = RoutingRule(
    name="long_query",
    predicate=lambda f: f.length > VERY_LONG_QUERY_MIN_CHARS,
    mode=SearchMode.HYBRID,
    rationale="Long query, vector similarity is more precise",
    suggestion="The 'hybrid' mode keeps full-text speed with vector precision",
)


class QueryRouter:
    """Heuristic classifier from query text to search mode."""

    def __init__(
        self,
        interrogatives: Iterable[str] = ENGLISH_INTERROGATIVES,
        rules: tuple[RoutingRule, ...] = DEFAULT_RULES,
    ):
        self.interrogatives = tuple(phrase.lower() for phrase in interrogatives)
        self.rules = rules
        self._interrogative_pattern = re.compile(
            r"\b(?:"
            + "|".join(re.escape(phrase) for phrase in self.interrogatives)
            + r")\b"
        ) if self.interrogatives else None

    def features(self, query: str) -> QueryFeatures:
        text = query.strip().lower()
        has_interrogative = bool(
            self._interrogative_pattern and self._interrogative_pattern.search(text)
        )
        return QueryFeatures(
            text=text,
            token_count=len(text.split()),
            length=len(text),
            has_interrogative=has_interrogative,
        )

    def match(self, query: str) -> RoutingRule:
        """Return the first rule matching ``query``."""
        features = self.features(query)
        for rule in self.rules:
            if rule.matches(features):
                return rule
        raise LookupError("Routing rules must end with a catch-all rule")

    def decide_mode(
        self, query: str, requested: SearchMode = SearchMode.AUTO
    ) -> SearchMode:
        """
        Resolve the search mode for a query.

        An explicit ``requested`` mode always wins; ``auto`` runs the rules.
        """
        requested = SearchMode(requested)
        if requested is not SearchMode.AUTO:
            return requested
        return self.match(query).mode

    def analyze_query(self, query: str) -> QueryAnalysis:
        """
        Explain the routing decision for a query.

        Every matching condition contributes its rationale and suggestion,
        in rule order. The catch-all rule only contributes when it decided.
        """
        features = self.features(query)
        decided = self.match(query)

        rationale: list[str] = []
        suggestions: list[str] = []
        for rule in (*self.rules, LONG_QUERY_NOTE):
            if rule.name == "default" and rule is not decided:
                continue
            if rule.matches(features):
                rationale.append(rule.rationale)
                suggestions.append(rule.suggestion)

        return QueryAnalysis(
            recommended_mode=decided.mode,
            confidence=self._confidence(decided.mode, features),
            rationale=tuple(rationale),
            suggestions=tuple(suggestions),
        )

    @staticmethod
    def _confidence(mode: SearchMode, features: QueryFeatures) -> float:
        # Hand-tuned UI hint
        if mode is SearchMode.TEXT and features.token_count <= SHORT_QUERY_MAX_TOKENS:
            return 0.8
        if mode is SearchMode.HYBRID and (
            features.has_interrogative or features.length > LONG_QUERY_MIN_CHARS
        ):
            return 0.9
        if (
            mode is SearchMode.VECTOR
            and features.length > 20
            and features.token_count > SHORT_QUERY_MAX_TOKENS
        ):
            return 0.7
        return 0.5


_default_router = QueryRouter()


def decide_mode(query: str, requested: SearchMode = SearchMode.AUTO) -> SearchMode:
    """Route ``query`` with the default English rule set."""
    return _default_router.decide_mode(query, requested)


def analyze_query(query: str) -> QueryAnalysis:
    """Analyze ``query`` with the default English rule set."""
    return _default_router.analyze_query(query)
