"""
Smart Code Retriever Search Strategies

Three independent retrieval strategies run against the same read-only
:class:`CodeIndex`, plus the hybrid strategy that fuses them:

1. **Keyword** — exact / substring / Jaro-Winkler name matching plus
   position-weighted containment in the searchable text
2. **Dependency** — seeds from the inverted index, bounded breadth-first
   expansion through the dependency graph and package siblings
3. **Embedding** — cosine similarity against precomputed fragment vectors
4. **Hybrid** — positional weighted fusion of the above with
   query-sensitive contextual boosts

No strategy keeps state between calls: every ``retrieve`` is a pure
function of (query, index snapshot, max_results, configuration).
"""

import json
import logging
import math
from collections import deque
from typing import Dict, List, Optional, Sequence

from coderetriever.core.config import resolve_weights
from coderetriever.core.engine import (
    CodeFragment,
    EmbeddingProvider,
    FragmentKind,
    NullEmbeddingProvider,
    ScoredFragment,
    SearchResult,
    cosine_similarity,
    name_similarity,
)
from coderetriever.core.index import CodeIndex

logger = logging.getLogger(__name__)


def _rank(scores: Dict[CodeFragment, float], max_results: int) -> List[ScoredFragment]:
    """Stable sort by score descending (ties keep encounter order), then truncate."""
    ranked = [ScoredFragment(fragment, score) for fragment, score in scores.items()]
    ranked.sort()
    return ranked[:max(max_results, 0)]


def _query_terms(query: str) -> List[str]:
    return query.lower().strip().split()


# =============================================================================
# Strategy interface
# =============================================================================

class RetrievalStrategy:
    """
    Common interface of every retrieval strategy.

    Subclasses implement :meth:`retrieve_scored`; :meth:`retrieve` strips
    the scores for callers that only need the ordered fragments.
    """

    name: str = "Retrieval"

    def retrieve(self, query: str, index: CodeIndex, max_results: int) -> List[CodeFragment]:
        """Relevant fragments for *query*, most relevant first."""
        return [s.fragment for s in self.retrieve_scored(query, index, max_results)]

    def retrieve_scored(self, query: str, index: CodeIndex,
                        max_results: int) -> List[ScoredFragment]:
        raise NotImplementedError

    def score(self, query: str, fragment: CodeFragment) -> float:
        """Stand-alone relevance of one fragment (no index context)."""
        return 0.0


# =============================================================================
# Keyword strategy
# =============================================================================

class KeywordRetrievalStrategy(RetrievalStrategy):
    """Lexical matching over every fragment in the index (full scan)."""

    name = "Keyword-Based"

    EXACT_NAME_SCORE = 10.0
    PARTIAL_NAME_SCORE = 5.0
    SIMILARITY_THRESHOLD = 0.8
    SIMILARITY_WEIGHT = 3.0
    CONTENT_SCORE = 2.0
    CONTENT_PREVIEW_CHARS = 500
    DOCUMENTED_MULTIPLIER = 1.1
    KIND_MULTIPLIERS = {
        FragmentKind.CLASS: 1.2,
        FragmentKind.METHOD: 1.1,
    }

    def retrieve_scored(self, query: str, index: CodeIndex,
                        max_results: int) -> List[ScoredFragment]:
        terms = _query_terms(query)
        scores: Dict[CodeFragment, float] = {}
        for fragment in index.all_fragments():
            score = self._score_terms(terms, fragment)
            if score > 0:
                scores[fragment] = score

        logger.debug(f"Keyword strategy scored {len(scores)} fragments for '{query}'")
        return _rank(scores, max_results)

    def score(self, query: str, fragment: CodeFragment) -> float:
        return self._score_terms(_query_terms(query), fragment) / 10.0

    @classmethod
    def searchable_content(cls, fragment: CodeFragment) -> str:
        """Name, signature, documentation, and the head of the body."""
        parts = [fragment.name, " "]
        if fragment.signature is not None:
            parts += [fragment.signature, " "]
        if fragment.documentation is not None:
            parts += [fragment.documentation, " "]
        if fragment.content is not None:
            parts.append(fragment.content[:cls.CONTENT_PREVIEW_CHARS])
        return "".join(parts)

    def _apply_kind_multiplier(self, score: float, fragment: CodeFragment) -> float:
        # Applied after every query term, so a multi-term query compounds it.
        return score * self.KIND_MULTIPLIERS.get(fragment.kind, 1.0)

    def _score_terms(self, terms: Sequence[str], fragment: CodeFragment) -> float:
        score = 0.0
        name = fragment.name.lower()
        content = self.searchable_content(fragment).lower()

        for term in terms:
            if name == term:
                score += self.EXACT_NAME_SCORE
            elif term in name:
                score += self.PARTIAL_NAME_SCORE

            similarity = name_similarity(term, name)
            if similarity > self.SIMILARITY_THRESHOLD:
                score += similarity * self.SIMILARITY_WEIGHT

            position = content.find(term)
            if position >= 0:
                position_factor = 1.0 - position / len(content)
                score += self.CONTENT_SCORE * (1.0 + position_factor)

            score = self._apply_kind_multiplier(score, fragment)

        if fragment.has_documentation:
            score *= self.DOCUMENTED_MULTIPLIER
        return score


# =============================================================================
# Dependency strategy
# =============================================================================

class DependencyRetrievalStrategy(RetrievalStrategy):
    """
    Structural retrieval: keyword seeds expanded through the dependency
    graph and package siblings, scored by proximity to the seeds.
    """

    name = "Dependency-Based"

    SEED_COUNT = 3
    MAX_DEPTH = 2
    SIBLING_LIMIT = 3
    SEED_SCORE = 10.0
    DIRECT_SCORE = 5.0
    TRANSITIVE_SCORE = 2.0
    KIND_MULTIPLIERS = {
        FragmentKind.CLASS: 1.3,
        FragmentKind.METHOD: 1.2,
    }

    def retrieve_scored(self, query: str, index: CodeIndex,
                        max_results: int) -> List[ScoredFragment]:
        seeds = self.find_seeds(query, index)
        if not seeds:
            logger.warning(f"No seed elements found for query: {query}")
            return []

        expanded = self.expand(seeds, index)
        logger.info(f"Expanded from {len(seeds)} seeds to {len(expanded)} related elements")

        scores = self._score_by_proximity(seeds, list(expanded))
        return _rank(scores, max_results)

    def score(self, query: str, fragment: CodeFragment) -> float:
        return 0.7 if fragment.dependencies else 0.3

    def find_seeds(self, query: str, index: CodeIndex) -> List[CodeFragment]:
        return index.search_by_keywords(query)[:self.SEED_COUNT]

    def expand(self, seeds: Sequence[CodeFragment], index: CodeIndex) -> Dict[CodeFragment, int]:
        """
        Breadth-first expansion from *seeds* bounded at :attr:`MAX_DEPTH`.

        Returns ``{fragment: depth}`` in discovery order.  The first depth
        at which a fragment is seen wins; fragments at the depth bound are
        included but not expanded.
        """
        depths: Dict[CodeFragment, int] = {}
        for seed in seeds:
            depths.setdefault(seed, 0)
        queue = deque(depths)

        while queue:
            current = queue.popleft()
            depth = depths[current]
            if depth >= self.MAX_DEPTH:
                continue

            neighbours: List[CodeFragment] = []
            neighbours += sorted(index.find_dependencies(current.id), key=lambda f: f.id)
            neighbours += sorted(index.find_dependents(current.id), key=lambda f: f.id)
            neighbours += index.find_siblings(current)[:self.SIBLING_LIMIT]

            for neighbour in neighbours:
                if neighbour in depths:
                    continue
                depths[neighbour] = depth + 1
                queue.append(neighbour)

        return depths

    @staticmethod
    def directly_connected(a: CodeFragment, b: CodeFragment) -> bool:
        """Either references the other by name, or both share a package."""
        return (
            b.name in a.dependencies
            or a.name in b.dependencies
            or (a.package_name is not None and a.package_name == b.package_name)
        )

    def _score_by_proximity(self, seeds: Sequence[CodeFragment],
                            related: Sequence[CodeFragment]) -> Dict[CodeFragment, float]:
        seed_set = set(seeds)
        scores: Dict[CodeFragment, float] = {}
        for fragment in related:
            if fragment in seed_set:
                score = self.SEED_SCORE
            else:
                score = 0.0
                for seed in seeds:
                    if self.directly_connected(fragment, seed):
                        score += self.DIRECT_SCORE
                    else:
                        score += self.TRANSITIVE_SCORE
            scores[fragment] = score * self.KIND_MULTIPLIERS.get(fragment.kind, 1.0)
        return scores


# =============================================================================
# Embedding strategy
# =============================================================================

class EmbeddingRetrievalStrategy(RetrievalStrategy):
    """
    Semantic retrieval by cosine similarity against fragment vectors.

    An empty result means "signal unavailable": the capability is off,
    the query could not be embedded, or the provider failed.
    """

    name = "Embedding-Based (Semantic)"

    def __init__(self, embedding_provider: EmbeddingProvider | None = None):
        self.embedding_provider = embedding_provider or NullEmbeddingProvider()

    def retrieve_scored(self, query: str, index: CodeIndex,
                        max_results: int) -> List[ScoredFragment]:
        if not self.embedding_provider.is_available():
            logger.warning("Embedding provider is not available. Cannot perform embedding-based retrieval.")
            return []

        try:
            vectors = self.embedding_provider.embed([query])
            if not vectors or vectors[0] is None or len(vectors[0]) == 0:
                logger.warning(f"Could not generate embedding for query: {query}")
                return []
            query_vector = [float(v) for v in vectors[0]]

            scores: Dict[CodeFragment, float] = {}
            skipped = 0
            for fragment in index.all_fragments():
                if not fragment.has_embedding:
                    continue
                if len(fragment.embedding) != len(query_vector):
                    skipped += 1
                    continue
                scores[fragment] = cosine_similarity(query_vector, fragment.embedding)

            if skipped:
                logger.warning(f"Skipped {skipped} fragments with mismatched embedding dimensions")
            return _rank(scores, max_results)
        except Exception as e:
            logger.error(f"Error during semantic retrieval: {e}")
            return []


# =============================================================================
# Hybrid strategy
# =============================================================================

class HybridRetrievalStrategy(RetrievalStrategy):
    """
    Weighted fusion of keyword, dependency and (optionally) embedding
    rankings, followed by contextual boosts.

    Args:
        embedding_provider: Capability used by the embedding strategy.
        use_embeddings: Session toggle.  Selects the weight set
            (0.3/0.2/0.5 when enabled, 0.6/0.4 when disabled) and whether
            the embedding strategy runs at all.
        weights: Optional explicit weight override.
    """

    EXPLAIN_MARKERS = ("how", "explain")
    IMPLEMENT_MARKERS = ("implement", "add")
    BUG_MARKERS = ("bug", "error", "fix")
    EXCEPTION_MARKERS = ("catch", "throw", "except", "raise")

    def __init__(self, embedding_provider: EmbeddingProvider | None = None,
                 use_embeddings: bool = False,
                 weights: Optional[Dict[str, float]] = None):
        self.use_embeddings = use_embeddings
        self.keyword_strategy = KeywordRetrievalStrategy()
        self.dependency_strategy = DependencyRetrievalStrategy()
        self.embedding_strategy = EmbeddingRetrievalStrategy(embedding_provider)

        self.weights = resolve_weights(use_embeddings, weights)

    @property
    def name(self) -> str:
        if self.use_embeddings:
            return "Hybrid (Keyword + Dependency + Semantic)"
        return "Hybrid (Keyword + Dependency)"

    def retrieve_scored(self, query: str, index: CodeIndex,
                        max_results: int) -> List[ScoredFragment]:
        candidates = max_results * 2
        combined: Dict[CodeFragment, float] = {}

        keyword_results = self.keyword_strategy.retrieve(query, index, candidates)
        dependency_results = self.dependency_strategy.retrieve(query, index, candidates)
        logger.info(f"Keyword strategy found {len(keyword_results)} results")
        logger.info(f"Dependency strategy found {len(dependency_results)} results")

        self.add_positional_scores(combined, keyword_results, self.weights.get("keyword", 0.0))
        self.add_positional_scores(combined, dependency_results, self.weights.get("dependency", 0.0))

        if self.use_embeddings:
            embedding_results = self.embedding_strategy.retrieve(query, index, candidates)
            logger.info(f"Embedding strategy found {len(embedding_results)} results")
            self.add_positional_scores(combined, embedding_results, self.weights.get("embedding", 0.0))

        for fragment in combined:
            combined[fragment] *= self.contextual_boost(query, fragment, index)

        results = _rank(combined, max_results)
        logger.info(f"Hybrid strategy returning {len(results)} results")
        return results

    def score(self, query: str, fragment: CodeFragment) -> float:
        keyword_score = self.keyword_strategy.score(query, fragment)
        dependency_score = self.dependency_strategy.score(query, fragment)
        return (
            keyword_score * self.weights.get("keyword", 0.0)
            + dependency_score * self.weights.get("dependency", 0.0)
        )

    @staticmethod
    def add_positional_scores(combined: Dict[CodeFragment, float],
                              results: Sequence[CodeFragment], weight: float) -> None:
        """Add ``(1 - i/n) * weight`` for the fragment at position *i* of *n*."""
        n = len(results)
        for i, fragment in enumerate(results):
            position_score = 1.0 - (i / n)
            combined[fragment] = combined.get(fragment, 0.0) + position_score * weight

    def contextual_boost(self, query: str, fragment: CodeFragment, index: CodeIndex) -> float:
        """Multiplicative boost for *fragment* given the lowercase query text."""
        lower_query = query.lower()
        boost = 1.0

        if any(marker in lower_query for marker in self.EXPLAIN_MARKERS):
            if fragment.has_documentation:
                boost *= 1.5
            if fragment.kind == FragmentKind.CLASS:
                boost *= 1.3

        if any(marker in lower_query for marker in self.IMPLEMENT_MARKERS):
            if fragment.kind == FragmentKind.METHOD:
                boost *= 1.4

        if any(marker in lower_query for marker in self.BUG_MARKERS):
            content = fragment.content or ""
            if any(marker in content for marker in self.EXCEPTION_MARKERS):
                boost *= 1.3

        if len(fragment.dependencies) > 3:
            boost *= 1.2

        dependents = len(index.find_dependents(fragment.id))
        if dependents > 2:
            boost *= 1.0 + math.log(dependents) * 0.1

        return boost


def create_strategy(kind: str = "hybrid",
                    embedding_provider: EmbeddingProvider | None = None,
                    use_embeddings: bool = False,
                    weights: Optional[Dict[str, float]] = None) -> RetrievalStrategy:
    """Build a strategy by name: ``hybrid``, ``keyword``, ``dependency`` or ``embedding``."""
    kind = kind.lower()
    if kind == "hybrid":
        return HybridRetrievalStrategy(embedding_provider, use_embeddings=use_embeddings,
                                       weights=weights)
    if kind == "keyword":
        return KeywordRetrievalStrategy()
    if kind == "dependency":
        return DependencyRetrievalStrategy()
    if kind == "embedding":
        return EmbeddingRetrievalStrategy(embedding_provider)
    raise ValueError(
        f"Unknown strategy '{kind}'. Supported: hybrid, keyword, dependency, embedding"
    )


def to_search_results(scored: Sequence[ScoredFragment], strategy_name: str) -> List[SearchResult]:
    """Convert ranked fragments to display results (1-based rank)."""
    return [
        SearchResult.from_scored(item, rank=i + 1, strategy=strategy_name)
        for i, item in enumerate(scored)
    ]


# =============================================================================
# Result Formatting
# =============================================================================

class ResultFormatter:
    """Format search results for different output modes."""

    @staticmethod
    def _width() -> int:
        import shutil
        return min(shutil.get_terminal_size().columns, 78)

    # ── Console (human-friendly) ──────────────────────────────────

    @staticmethod
    def format_console(results: List[SearchResult], strategy_name: str = "",
                       elapsed_time: float | None = None) -> str:
        """
        Numbered listing (0-based, so ``show <n>`` in the shell can refer
        back to it) with kind, name, file and start line.
        """
        if not results:
            return "\n  No results found.\n"

        thin = "─" * ResultFormatter._width()
        header = f"  {len(results)} result{'s' if len(results) != 1 else ''}"
        if strategy_name:
            header += f"  ({strategy_name})"
        if elapsed_time is not None:
            header += f" in {elapsed_time:.4f} seconds"

        out: List[str] = [f"\n{thin}", header, thin]
        for i, r in enumerate(results):
            out.append(
                f"  [{i}] {r.kind}: {r.name} - {r.file_path}:{r.start_line}"
                f"   (score {r.score:.3f})"
            )
        out.append(thin)
        out.append("  Use 'show <n>' for details")
        return "\n".join(out)

    # ── Detail view ───────────────────────────────────────────────

    @staticmethod
    def format_detail(fragment: CodeFragment) -> str:
        """Full view of one fragment: metadata, docs, signature, dependencies, body."""
        bar = "=" * 80
        out = [
            "",
            bar,
            f"Element: {fragment.name} ({fragment.id})",
            f"Kind: {fragment.kind.value}",
            f"File: {fragment.file_path}",
            f"Lines: {fragment.start_line}-{fragment.end_line}",
            f"Package: {fragment.package_name or 'n/a'}",
        ]
        if fragment.documentation and fragment.documentation.strip():
            out += ["", "--- Documentation ---", fragment.documentation]
        if fragment.signature and fragment.signature.strip():
            out += ["", "--- Signature ---", fragment.signature]
        if fragment.dependencies:
            out += ["", "--- Dependencies ---", ", ".join(fragment.dependencies)]
        out += ["", "-" * 35 + " Content " + "-" * 36, fragment.content or "", bar, ""]
        return "\n".join(out)

    # ── JSON ──────────────────────────────────────────────────────

    @staticmethod
    def format_json(results: List[SearchResult]) -> str:
        """Format results as a JSON array (scores rounded to 4 places)."""
        payload = []
        for r in results:
            obj = r.to_dict()
            obj["score"] = round(r.score, 4)
            obj["file_path"] = r.file_path.replace("\\", "/")
            payload.append(obj)
        return json.dumps(payload, indent=2, allow_nan=False)

    # ── Compact (grep-like, one line per result) ──────────────────

    @staticmethod
    def format_compact(results: List[SearchResult]) -> str:
        """``file:line  name  [KIND]`` per result so terminals can link it."""
        if not results:
            return "No results found."
        return "\n".join(
            f"{r.file_path}:{r.start_line}  {r.name}  [{r.kind}]" for r in results
        )

    # ── Listing ───────────────────────────────────────────────────

    @staticmethod
    def format_list(fragments: Sequence[CodeFragment], limit: int = 50) -> str:
        """First *limit* fragments, one per line, with a remainder note."""
        out = [f"\nCode elements (first {min(limit, len(fragments))} of {len(fragments)}):"]
        for fragment in fragments[:limit]:
            out.append(f"  {fragment}")
        if len(fragments) > limit:
            out.append(f"  ... and {len(fragments) - limit} more")
        return "\n".join(out)
