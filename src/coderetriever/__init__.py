"""
Smart Code Retriever — hybrid keyword, dependency-graph and semantic
retrieval over Python codebases.

The ``coderetriever`` package parses source files into code fragments,
builds an in-memory multi-view index, and ranks fragments for a
natural-language query.  The ranked fragments can be sent to an LLM as
context for retrieval-augmented answers.

Quick start (programmatic API)::

    from coderetriever import CodeRetriever

    client = CodeRetriever()                                     # reads env vars
    client.index("./src")                                        # in-memory index
    results = client.search("user repository", path="./src")     # ranked hits

Quick start (CLI)::

    coderetriever search ./src "user repository"
    coderetriever shell ./src

Configuration override::

    from coderetriever import CodeRetriever, RetrieverConfig

    config = RetrieverConfig(use_embeddings=True, embedding_provider="openai",
                             openai_api_key="sk-...")
    client = CodeRetriever(config=config)
"""

__version__ = "1.0.0"

# Primary public API — the CodeRetriever facade
from coderetriever.client import CodeRetriever

# Configuration
from coderetriever.core.config import RetrieverConfig

# Core data types that callers interact with
from coderetriever.core.engine import (
    CodeFragment,
    FragmentKind,
    IndexResult,
    ScoredFragment,
    SearchResult,
)
from coderetriever.core.index import CodeIndex
from coderetriever.core.search import (
    DependencyRetrievalStrategy,
    EmbeddingRetrievalStrategy,
    HybridRetrievalStrategy,
    KeywordRetrievalStrategy,
    RetrievalStrategy,
)

# Exception hierarchy
from coderetriever.exceptions import (
    CodeRetrieverError,
    ConfigError,
    EmbeddingError,
    IndexNotBuiltError,
    ParseError,
    ProviderError,
    RetrievalError,
)


def health(config: RetrieverConfig | None = None) -> dict:
    """
    Return a small status dict for agents or REST health checks (no index/network).

    When *config* is None, uses :meth:`RetrieverConfig.from_env()` for the snapshot.
    """
    cfg = config or RetrieverConfig.from_env()
    return {
        "version": __version__,
        "llm_provider": cfg.llm_provider,
        "embeddings_enabled": cfg.use_embeddings,
    }


__all__ = [
    "__version__",
    # Facade
    "CodeRetriever",
    # Config
    "RetrieverConfig",
    # Data types
    "CodeFragment",
    "FragmentKind",
    "IndexResult",
    "ScoredFragment",
    "SearchResult",
    "CodeIndex",
    # Strategies
    "RetrievalStrategy",
    "KeywordRetrievalStrategy",
    "DependencyRetrievalStrategy",
    "EmbeddingRetrievalStrategy",
    "HybridRetrievalStrategy",
    # Exceptions
    "CodeRetrieverError",
    "ConfigError",
    "ProviderError",
    "EmbeddingError",
    "IndexNotBuiltError",
    "ParseError",
    "RetrievalError",
    # Status
    "health",
]
