"""
Smart Code Retriever Exception Hierarchy

Structured exceptions for clear error handling across CLI, API, and MCP
consumers.  Each exception type maps to a specific failure mode so that
callers can handle errors precisely without parsing message strings.

Usage::

    from coderetriever.exceptions import CodeRetrieverError, IndexNotBuiltError

    try:
        results = client.search("validate user")
    except IndexNotBuiltError:
        print("Call client.index(<dir>) first.")
    except CodeRetrieverError as exc:
        print(f"Retriever error: {exc}")
"""


class CodeRetrieverError(Exception):
    """Base exception for all Smart Code Retriever errors."""


class ConfigError(CodeRetrieverError, ValueError):
    """Configuration is invalid or incomplete (e.g. missing API key).

    Inherits from ``ValueError`` so callers that already catch
    ``ValueError`` from ``RetrieverConfig.validate()`` keep working.
    """


class ProviderError(CodeRetrieverError):
    """LLM or embedding provider failure — API error, authentication, or rate limiting."""


class EmbeddingError(ProviderError):
    """The embedding provider returned missing or malformed vectors."""


class IndexNotBuiltError(CodeRetrieverError, LookupError):
    """No in-memory index has been built for the requested path.

    The index is never persisted; it must be rebuilt with
    :meth:`CodeRetriever.index` in every process.
    """


class ParseError(CodeRetrieverError):
    """A source file or fragment dump could not be turned into fragments."""


class RetrievalError(CodeRetrieverError):
    """Error during retrieval execution outside the no-signal cases."""
