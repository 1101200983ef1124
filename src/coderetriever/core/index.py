"""
Smart Code Retriever In-Memory Index

Holds a snapshot of the parsed fragments plus four derived views built
together in one pass: identity lookup, kind/package grouping, an
inverted keyword index, and a dependency adjacency map.

The index is never persisted and never rebuilt incrementally.  The only
post-construction mutation is the embedding-finalization phase, which
must complete before any query is served.
"""

import logging
import re
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from coderetriever.core.engine import CodeFragment, FragmentKind

logger = logging.getLogger(__name__)

# Splits on lower→upper and upper→(upper followed by lower) boundaries
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_NON_WORD = re.compile(r"\W+")

MIN_TOKEN_LENGTH = 3
# Bodies at or above this size contribute no tokens to the inverted index
MAX_INDEXED_CONTENT = 1000


def split_camel_case(text: str) -> List[str]:
    """
    Split an identifier on camel-case boundaries and lowercase the parts.

    ``HybridRetrievalStrategy`` → ``['hybrid', 'retrieval', 'strategy']``;
    ``HTTPServer`` → ``['http', 'server']``.  Underscores separate
    parts too, so ``get_user`` → ``['get', 'user']``; the whole
    identifier is kept by :func:`name_tokens`.
    """
    if not text:
        return []
    parts: List[str] = []
    for chunk in text.split("_"):
        parts.extend(p.lower() for p in _CAMEL_BOUNDARY.split(chunk) if p)
    return parts


def tokenize(text: Optional[str]) -> List[str]:
    """Split free text on non-word characters (empty parts dropped)."""
    if not text:
        return []
    return [part for part in _NON_WORD.split(text) if part]


def name_tokens(name: str) -> Set[str]:
    """
    Lowercased tokens for an identifier: the whole name, each
    underscore-separated chunk, and the camel-case parts of each.

    ``get_userName`` → ``{'get_username', 'get', 'username', 'user', 'name'}``
    """
    if not name:
        return set()
    words = {name.lower()}
    words.update(chunk.lower() for chunk in name.split("_") if chunk)
    words.update(split_camel_case(name))
    return words


def extract_tokens(fragment: CodeFragment) -> Set[str]:
    """Lowercase tokens of length >= 3 used to index *fragment*."""
    words: Set[str] = name_tokens(fragment.name)
    words.update(tokenize(fragment.signature))
    words.update(tokenize(fragment.documentation))
    if fragment.content is not None and len(fragment.content) < MAX_INDEXED_CONTENT:
        words.update(tokenize(fragment.content))
    return {w.lower() for w in words if len(w) >= MIN_TOKEN_LENGTH}


class CodeIndex:
    """
    Multi-view index over a fixed fragment set.

    Args:
        fragments: The fragment records to index.  The index keeps its
            own list; the records themselves are shared.
        resolve_dependency_names: When False (default) dependency names
            are looked up directly as fragment ids, which only succeeds
            when a bare type name equals a full id.  When True a
            ``name → ids`` lookup maps each reference to every fragment
            whose name or id equals it.
    """

    def __init__(self, fragments: Iterable[CodeFragment],
                 resolve_dependency_names: bool = False):
        self._fragments: List[CodeFragment] = list(fragments)
        self.resolve_dependency_names = resolve_dependency_names

        self._by_id: Dict[str, CodeFragment] = {}
        self._by_kind: Dict[FragmentKind, List[CodeFragment]] = defaultdict(list)
        self._by_package: Dict[str, List[CodeFragment]] = defaultdict(list)
        self._inverted: Dict[str, Set[str]] = defaultdict(set)
        self._dependency_graph: Dict[str, Set[str]] = {}
        self._by_name: Dict[str, List[str]] = defaultdict(list)

        self._build()
        logger.info(f"Built index with {len(self._fragments)} elements")

    # ── Construction ──────────────────────────────────────────────

    def _build(self) -> None:
        for fragment in self._fragments:
            if fragment.id in self._by_id:
                logger.warning(f"Duplicate fragment id '{fragment.id}'; last record wins")
            self._by_id[fragment.id] = fragment
            self._by_kind[fragment.kind].append(fragment)
            if fragment.package_name is not None:
                self._by_package[fragment.package_name].append(fragment)

            for token in extract_tokens(fragment):
                self._inverted[token].add(fragment.id)

            if fragment.dependencies:
                self._dependency_graph[fragment.id] = set(fragment.dependencies)

            if self.resolve_dependency_names:
                self._by_name[fragment.name].append(fragment.id)

    # ── Views ─────────────────────────────────────────────────────

    @property
    def inverted_index(self) -> Mapping[str, Set[str]]:
        return self._inverted

    @property
    def dependency_graph(self) -> Mapping[str, Set[str]]:
        return self._dependency_graph

    def all_fragments(self) -> List[CodeFragment]:
        """Copy of the snapshot list, in insertion order."""
        return list(self._fragments)

    def get(self, fragment_id: str) -> Optional[CodeFragment]:
        """Return the fragment indexed under *fragment_id*, or None."""
        return self._by_id.get(fragment_id)

    lookup_by_id = get

    def by_kind(self, kind: FragmentKind) -> List[CodeFragment]:
        return list(self._by_kind.get(FragmentKind(kind), []))

    def by_package(self, package_name: Optional[str]) -> List[CodeFragment]:
        if package_name is None:
            return []
        return list(self._by_package.get(package_name, []))

    def packages(self) -> List[str]:
        return sorted(self._by_package)

    def size(self) -> int:
        return len(self._fragments)

    def __len__(self) -> int:
        return len(self._fragments)

    def kind_counts(self) -> Dict[str, int]:
        """Fragment count per kind, every kind present (possibly zero)."""
        return {kind.value: len(self._by_kind.get(kind, [])) for kind in FragmentKind}

    # ── Queries ───────────────────────────────────────────────────

    def search_by_keywords(self, text: str) -> List[CodeFragment]:
        """
        Coarse keyword pre-filter over the inverted index.

        Each whitespace-separated lowercase term adds one hit to every
        fragment containing it; fragments are returned by hit count
        descending (ties in first-hit order).
        """
        hits: Dict[str, int] = {}
        for term in text.lower().split():
            for fragment_id in sorted(self._inverted.get(term, ())):
                hits[fragment_id] = hits.get(fragment_id, 0) + 1

        ranked = sorted(hits.items(), key=lambda item: -item[1])
        return [self._by_id[fid] for fid, _ in ranked if fid in self._by_id]

    def _resolve(self, reference: str) -> List[str]:
        """Fragment ids a dependency reference points at."""
        if not self.resolve_dependency_names:
            return [reference] if reference in self._by_id else []
        ids = list(self._by_name.get(reference, []))
        if reference in self._by_id and reference not in ids:
            ids.append(reference)
        return ids

    def find_dependencies(self, fragment_id: str) -> Set[CodeFragment]:
        """Fragments referenced by *fragment_id*; unresolved names are dropped."""
        references = self._dependency_graph.get(fragment_id)
        if not references:
            return set()
        found: Set[CodeFragment] = set()
        for reference in references:
            for target in self._resolve(reference):
                found.add(self._by_id[target])
        return found

    def find_dependents(self, fragment_id: str) -> Set[CodeFragment]:
        """Fragments whose dependency set references *fragment_id*."""
        dependents: Set[CodeFragment] = set()
        target = self._by_id.get(fragment_id)
        for source_id, references in self._dependency_graph.items():
            if fragment_id in references:
                matched = True
            elif self.resolve_dependency_names and target is not None:
                matched = target.name in references
            else:
                matched = False
            if matched and source_id in self._by_id:
                dependents.add(self._by_id[source_id])
        return dependents

    def find_siblings(self, fragment: CodeFragment) -> List[CodeFragment]:
        """All fragments sharing *fragment*'s package, excluding itself."""
        if fragment.package_name is None:
            return []
        return [
            other for other in self._by_package.get(fragment.package_name, [])
            if other.id != fragment.id
        ]

    # ── Embedding finalization (phase two) ────────────────────────

    def finalize_embeddings(self, vectors: Mapping[str, Sequence[float]]) -> int:
        """
        Attach embedding vectors keyed by fragment id.

        Must not run while queries are in flight.  Unknown ids are
        ignored.  Returns the number of fragments updated.
        """
        attached = 0
        for fragment_id, vector in vectors.items():
            fragment = self._by_id.get(fragment_id)
            if fragment is None:
                logger.debug(f"Ignoring embedding for unknown fragment '{fragment_id}'")
                continue
            fragment.embedding = [float(v) for v in vector]
            attached += 1
        return attached

    def embedded_count(self) -> int:
        return sum(1 for f in self._fragments if f.has_embedding)
