"""
Smart Code Retriever Core — configuration, fragments, index, strategies,
parsing and the indexing pipeline.

Re-exports the primary classes for convenience::

    from coderetriever.core import CodeIndex, HybridRetrievalStrategy
"""

from coderetriever.core.config import Prompts, RetrieverConfig
from coderetriever.core.engine import (
    AnswerGenerator,
    CodeFragment,
    EmbeddingProvider,
    FragmentKind,
    NullEmbeddingProvider,
    ScoredFragment,
    SearchResult,
    create_embedding_provider,
    scan_directory,
)
from coderetriever.core.index import CodeIndex, split_camel_case
from coderetriever.core.search import (
    DependencyRetrievalStrategy,
    EmbeddingRetrievalStrategy,
    HybridRetrievalStrategy,
    KeywordRetrievalStrategy,
    ResultFormatter,
    RetrievalStrategy,
    create_strategy,
)

__all__ = [
    "Prompts",
    "RetrieverConfig",
    "AnswerGenerator",
    "CodeFragment",
    "EmbeddingProvider",
    "FragmentKind",
    "NullEmbeddingProvider",
    "ScoredFragment",
    "SearchResult",
    "create_embedding_provider",
    "scan_directory",
    "CodeIndex",
    "split_camel_case",
    "RetrievalStrategy",
    "KeywordRetrievalStrategy",
    "DependencyRetrievalStrategy",
    "EmbeddingRetrievalStrategy",
    "HybridRetrievalStrategy",
    "ResultFormatter",
    "create_strategy",
]
