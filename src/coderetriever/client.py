"""
Smart Code Retriever Client Facade

Single entry point for programmatic use.  Wraps indexing, hybrid search,
retrieval-augmented answers and statistics behind an instance-based API
with optional async support.

Indexes are held in memory only.  Every client instance builds its own
index per root directory and it disappears with the instance.

Usage::

    from coderetriever import CodeRetriever

    client = CodeRetriever()                      # reads env vars
    result = client.index("./myproject")
    print(f"Indexed {result.fragments_total} fragments")

    hits = client.search("user repository database", path="./myproject")
    for hit in hits:
        print(f"{hit.name} @ {hit.file_path}:{hit.start_line}")

    answer = client.ask("How does the repository open connections?",
                        path="./myproject")

    # Async variants (for FastAPI / async agents)
    result = await client.aindex("./myproject")
    hits   = await client.asearch("user repository", path="./myproject")
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Tuple

from coderetriever.core.config import RetrieverConfig
from coderetriever.core.engine import (
    AnswerGenerator,
    CodeFragment,
    EmbeddingProvider,
    IndexResult,
    LLMProvider,
    ScoredFragment,
    SearchResult,
    create_embedding_provider,
)
from coderetriever.core.index import CodeIndex
from coderetriever.core.search import HybridRetrievalStrategy, to_search_results
from coderetriever.exceptions import CodeRetrieverError, IndexNotBuiltError, RetrievalError

logger = logging.getLogger(__name__)


class CodeRetriever:
    """
    High-level Smart Code Retriever client.

    Args:
        config: Explicit configuration object.  When *None*, a config is
            built from environment variables or keyword overrides.
        embedding_provider: Embedding capability.  Defaults to the one
            selected by ``config`` (disabled unless ``use_embeddings``).
        llm_provider: LLM used by :meth:`ask`.  Defaults to the provider
            named in ``config``, created on first use.
        validate_on_init: Call :meth:`RetrieverConfig.validate` right away.
        **kwargs: Forwarded to :class:`RetrieverConfig` when *config* is
            ``None`` (e.g. ``use_embeddings=True``).
    """

    def __init__(
        self,
        config: RetrieverConfig | None = None,
        *,
        embedding_provider: EmbeddingProvider | None = None,
        llm_provider: LLMProvider | None = None,
        validate_on_init: bool = False,
        **kwargs,
    ):
        if config is not None:
            self._config = config
        elif kwargs:
            # Build a config from env, then overlay keyword overrides
            base = RetrieverConfig.from_env()
            merged = {
                f.name: kwargs.get(f.name, getattr(base, f.name))
                for f in base.__dataclass_fields__.values()
            }
            self._config = RetrieverConfig(**merged)
        else:
            self._config = RetrieverConfig.from_env()

        if validate_on_init:
            self._config.validate()

        self._embedding_provider = embedding_provider or create_embedding_provider(self._config)
        self._answers = AnswerGenerator(self._config, provider=llm_provider)
        self._strategy = HybridRetrievalStrategy(
            self._embedding_provider,
            use_embeddings=self._config.use_embeddings,
            weights=self._config.weights(),
        )

        # One in-memory index per root path
        self._indexes: Dict[Path, CodeIndex] = {}
        self._results: Dict[Path, IndexResult] = {}

    # ── Configuration ─────────────────────────────────────────────

    @property
    def config(self) -> RetrieverConfig:
        """The active configuration for this client."""
        return self._config

    @property
    def strategy_name(self) -> str:
        """Display name of the ranking strategy in use."""
        return self._strategy.name

    # ── Indexing ──────────────────────────────────────────────────

    def index(self, directory: str | Path, *, show_progress: bool = False) -> IndexResult:
        """
        Parse every supported source file in *directory* and build its
        in-memory index (replacing any previous index for that path).
        """
        from coderetriever.core.indexer import IndexingPipeline

        root = Path(directory).resolve()
        pipeline = IndexingPipeline(
            root_dir=root,
            config=self._config,
            embedding_provider=self._embedding_provider,
            show_progress=show_progress,
        )
        index, result = pipeline.run()
        self._indexes[root] = index
        self._results[root] = result
        return result

    def load(self, fragments_json: str | Path, *, path: str | Path | None = None) -> IndexResult:
        """
        Build an index from a JSON fragment dump produced elsewhere.

        The index is registered under *path* (default: the directory that
        holds the JSON file).
        """
        from coderetriever.core.indexer import EmbeddingIndexer
        from coderetriever.core.parser import load_fragments

        json_path = Path(fragments_json).resolve()
        root = Path(path).resolve() if path is not None else json_path.parent

        index = CodeIndex(
            load_fragments(json_path),
            resolve_dependency_names=self._config.resolve_dependency_names,
        )

        batches_failed = 0
        if self._config.use_embeddings:
            embedder = EmbeddingIndexer(
                self._embedding_provider, batch_size=self._config.embedding_batch_size,
            )
            embedder.embed_index(index)
            batches_failed = embedder.batches_failed

        result = IndexResult(
            fragments_total=index.size(),
            fragments_by_kind=index.kind_counts(),
            fragments_embedded=index.embedded_count(),
            embedding_batches_failed=batches_failed,
            embeddings_enabled=self._config.use_embeddings,
            root_dir=str(root),
        )
        self._indexes[root] = index
        self._results[root] = result
        return result

    def get_index(self, path: str | Path = ".") -> CodeIndex:
        """
        Return the in-memory index for *path*.

        Raises:
            IndexNotBuiltError: If :meth:`index` / :meth:`load` has not
                been called for *path* on this client.
        """
        root = Path(path).resolve()
        index = self._indexes.get(root)
        if index is None:
            raise IndexNotBuiltError(
                f"No index built for {root}. "
                "Run client.index() first (indexes are kept in memory only)."
            )
        return index

    # ── Search ────────────────────────────────────────────────────

    def _rank(self, query: str, path: str | Path,
              max_results: int | None) -> List[ScoredFragment]:
        index = self.get_index(path)
        limit = max_results if max_results is not None else self._config.max_search_results
        try:
            return self._strategy.retrieve_scored(query, index, limit)
        except CodeRetrieverError:
            raise
        except Exception as e:
            logger.error(f"Retrieval failed for '{query}': {e}")
            raise RetrievalError(f"Retrieval failed for query '{query}': {e}") from e

    def retrieve(self, query: str, *, path: str | Path = ".",
                 max_results: int | None = None) -> List[CodeFragment]:
        """Ranked fragments for *query* (no display conversion)."""
        return [s.fragment for s in self._rank(query, path, max_results)]

    def search(self, query: str, *, path: str | Path = ".",
               max_results: int | None = None) -> List[SearchResult]:
        """
        Search the index of *path* with the hybrid strategy.

        Returns:
            Ranked list of :class:`SearchResult` objects (rank is 1-based).

        Raises:
            IndexNotBuiltError: If no index exists for *path*.
            RetrievalError: If ranking fails unexpectedly.
        """
        return to_search_results(self._rank(query, path, max_results), self._strategy.name)

    # ── Question answering ────────────────────────────────────────

    def ask(self, question: str, *, path: str | Path = ".",
            context_results: int | None = None) -> str:
        """
        Answer *question* with the configured LLM, using the top-ranked
        fragments as context.

        Raises:
            IndexNotBuiltError: If no index exists for *path*.
            ProviderError: If the LLM is unavailable or keeps failing.
        """
        answer, _ = self.ask_with_context(question, path=path, context_results=context_results)
        return answer

    def ask_with_context(self, question: str, *, path: str | Path = ".",
                         context_results: int | None = None) -> Tuple[str, List[CodeFragment]]:
        """Like :meth:`ask`, but also return the fragments sent as context."""
        limit = context_results if context_results is not None else self._config.ask_context_results
        context = self.retrieve(question, path=path, max_results=limit)
        logger.info(f"Answering with {len(context)} context fragments")
        return self._answers.answer(question, context), context

    # ── Statistics ────────────────────────────────────────────────

    def stats(self, path: str | Path = ".") -> Dict[str, object]:
        """
        Index statistics for *path*.

        Raises:
            IndexNotBuiltError: If no index exists for *path*.
        """
        index = self.get_index(path)
        root = Path(path).resolve()
        data: Dict[str, object] = self._results[root].to_dict()
        data.update({
            "packages": len(index.packages()),
            "dependency_edges": sum(len(v) for v in index.dependency_graph.values()),
            "strategy": self._strategy.name,
        })
        return data

    # ── Async variants ────────────────────────────────────────────
    # asyncio.to_thread() keeps the event loop free; the same exceptions
    # as the sync methods are raised.

    async def aindex(self, directory: str | Path) -> IndexResult:
        """Async variant of :meth:`index`."""
        return await asyncio.to_thread(self.index, directory)

    async def asearch(self, query: str, *, path: str | Path = ".",
                      max_results: int | None = None) -> List[SearchResult]:
        """Async variant of :meth:`search`."""
        return await asyncio.to_thread(
            self.search, query, path=path, max_results=max_results,
        )

    async def aask(self, question: str, *, path: str | Path = ".",
                   context_results: int | None = None) -> str:
        """Async variant of :meth:`ask`."""
        return await asyncio.to_thread(
            self.ask, question, path=path, context_results=context_results,
        )

    async def astats(self, path: str | Path = ".") -> Dict[str, object]:
        """Async variant of :meth:`stats`."""
        return await asyncio.to_thread(self.stats, path)

    # ── Health (for agents / status endpoints) ─────────────────────

    def health(self) -> Dict[str, object]:
        """
        Small status dict for agents or readiness probes.

        Needs no index and makes no network calls.
        """
        return {
            "version": __import__("coderetriever", fromlist=["__version__"]).__version__,
            "llm_provider": self._config.llm_provider,
            "embeddings_enabled": self._config.use_embeddings,
            "embedding_provider": self._embedding_provider.provider_name,
            "strategy": self._strategy.name,
            "indexed_paths": [str(p) for p in self._indexes],
        }

    def indexed_paths(self) -> List[Path]:
        return list(self._indexes)
