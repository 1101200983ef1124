"""
Smart Code Retriever MCP Server

Exposes hybrid code search and retrieval-augmented answers as tools that
AI agents can invoke natively via the Model Context Protocol.

Indexes live in the server process only.  A path is indexed on its first
use (or explicitly through ``index_directory``) and kept for the lifetime
of the server.

Start with::

    coderetriever mcp                     # stdio transport
    coderetriever mcp --transport sse     # SSE transport

Or programmatically::

    from coderetriever.mcp.server import create_server
    server = create_server()
    server.run()
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Annotated

# FastMCP validates tool arguments with pydantic
from pydantic import Field  # type: ignore[import-untyped]

from coderetriever.core.config import RetrieverConfig
from coderetriever.exceptions import IndexNotBuiltError

logger = logging.getLogger(__name__)


def create_server(config: RetrieverConfig | None = None, client=None):
    """
    Build and return a configured FastMCP server instance.

    All tool invocations share one :class:`CodeRetriever` client, so an
    index built by one call is reused by the next.

    Args:
        config: Defaults to ``RetrieverConfig.from_env()``.
        client: Pre-built client (mainly for tests).

    Raises ``ImportError`` if ``fastmcp`` is not installed (install via
    ``pip install 'smart-code-retriever[mcp]'``).
    """
    from fastmcp import FastMCP  # type: ignore[import-untyped]

    from coderetriever.client import CodeRetriever

    cfg = config or RetrieverConfig.from_env()
    retriever = client or CodeRetriever(config=cfg)

    mcp = FastMCP("Smart-Code-Retriever")

    # ==================================================================
    # Helpers
    # ==================================================================

    def _resolve_path(path: str) -> Path:
        """'.' maps to CODERETRIEVER_DEFAULT_PATH when set (e.g. a mounted volume)."""
        if path == ".":
            default = os.environ.get("CODERETRIEVER_DEFAULT_PATH", "").strip()
            if default:
                path = default
        return Path(path).resolve()

    def _ensure_index(path: str) -> Path:
        root = _resolve_path(path)
        try:
            retriever.get_index(root)
        except IndexNotBuiltError:
            if not root.is_dir():
                raise FileNotFoundError(f"'{path}' is not a directory.")
            logger.info(f"Building in-memory index for {root}")
            retriever.index(root)
        return root

    # ==================================================================
    # Tool: index_directory
    # ==================================================================

    @mcp.tool()
    def index_directory(
        path: Annotated[
            str,
            Field(default=".", description="Directory whose Python sources to parse and index in memory. Re-running replaces the previous index for that path.")
        ] = ".",
    ) -> str:
        """(Re)build the in-memory index for a directory.

        Search tools index a path automatically on first use; call this
        after large code changes to refresh it.

        Returns:
            JSON summary with file and fragment counts.
        """
        root = _resolve_path(path)
        if not root.is_dir():
            raise FileNotFoundError(f"'{path}' is not a directory.")
        result = retriever.index(root)
        return json.dumps(result.to_dict())

    # ==================================================================
    # Tool: search_code
    # ==================================================================

    @mcp.tool()
    def search_code(
        query: Annotated[
            str,
            Field(default="", description="Natural-language or identifier query (e.g., 'user repository database connection'). Words like 'how'/'explain', 'implement'/'add' and 'bug'/'error'/'fix' adjust the ranking.")
        ] = "",
        path: Annotated[
            str,
            Field(default=".", description="Root directory to search. Indexed automatically on first use.")
        ] = ".",
        max_results: Annotated[
            int | None,
            Field(default=None, description="Maximum number of results. Defaults to the configured value (typically 10).")
        ] = None,
    ) -> str:
        """Rank classes, methods, fields and enums relevant to a query using
        keyword, dependency-graph and (optionally) semantic signals.

        Returns:
            JSON array of results with name, kind, file, lines and score.
        """
        try:
            from coderetriever.core.search import ResultFormatter

            query = str(query).strip() if query is not None else ""
            if not query:
                return json.dumps({"error": "Missing required argument: query", "results": []})

            root = _ensure_index(path)
            results = retriever.search(query, path=root, max_results=max_results)
            return ResultFormatter.format_json(results)
        except Exception as e:
            return json.dumps({"error": str(e), "results": []})

    # ==================================================================
    # Tool: ask_codebase
    # ==================================================================

    @mcp.tool()
    def ask_codebase(
        question: Annotated[
            str,
            Field(description="Question about the codebase. The top-ranked code fragments are sent to the configured LLM as context.")
        ],
        path: Annotated[
            str,
            Field(default=".", description="Root directory of the codebase. Indexed automatically on first use.")
        ] = ".",
        context_results: Annotated[
            int | None,
            Field(default=None, description="Number of fragments sent as context (default from config, typically 5).")
        ] = None,
    ) -> str:
        """Answer a question about the codebase with retrieval-augmented
        generation.

        Returns:
            JSON with the answer and the ids of the context fragments.
        """
        root = _ensure_index(path)
        answer, context = retriever.ask_with_context(
            question, path=root, context_results=context_results,
        )
        return json.dumps({
            "answer": answer,
            "context": [fragment.id for fragment in context],
        })

    # ==================================================================
    # Tool: get_index_stats
    # ==================================================================

    @mcp.tool()
    def get_index_stats(
        path: Annotated[
            str,
            Field(default=".", description="Root directory whose in-memory index to inspect. Indexed automatically if needed.")
        ] = ".",
    ) -> str:
        """Return fragment counts per kind, packages and dependency edges.

        Returns:
            JSON statistics object.
        """
        root = _ensure_index(path)
        return json.dumps(retriever.stats(root))

    # ==================================================================
    # Tool: health (readiness check)
    # ==================================================================

    @mcp.tool()
    def health() -> str:
        """Check that the server is running and report its configuration.

        Returns:
            JSON with status, version, providers and strategy.
        """
        status = {"status": "ok"}
        status.update(retriever.health())
        return json.dumps(status)

    # ==================================================================
    # Prompt templates
    # ==================================================================

    @mcp.prompt()
    def explore_codebase(path: str = ".") -> str:
        """High-level overview of an unfamiliar codebase."""
        return (
            f"Call get_index_stats with path='{path}' to see how many classes, "
            "methods and packages the project has. Then call search_code with "
            "queries such as 'main entry point', 'configuration' and "
            "'explain the data model' and summarise what you find."
        )

    return mcp
