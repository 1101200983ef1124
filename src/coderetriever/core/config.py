"""
Smart Code Retriever Configuration Module

Centralized configuration for parsing, indexing, ranking, and the LLM /
embedding collaborators.  Every component receives a
:class:`RetrieverConfig` instance explicitly; nothing reads the
environment at ranking time.
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional

# =============================================================================
# Hybrid weight sets
# =============================================================================

# Weight sets are a pure function of whether embeddings are enabled.
WEIGHTS_WITH_EMBEDDINGS: Dict[str, float] = {
    "keyword": 0.3,
    "dependency": 0.2,
    "embedding": 0.5,
}
WEIGHTS_WITHOUT_EMBEDDINGS: Dict[str, float] = {
    "keyword": 0.6,
    "dependency": 0.4,
}

def resolve_weights(use_embeddings: bool,
                    override: Optional[Dict[str, float]] = None) -> Dict[str, float]:
    """Hybrid weights: *override* when given, else the set for *use_embeddings*."""
    if override is not None:
        return dict(override)
    if use_embeddings:
        return dict(WEIGHTS_WITH_EMBEDDINGS)
    return dict(WEIGHTS_WITHOUT_EMBEDDINGS)


_TRUTHY = ("1", "true", "yes", "on", "y")


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


# =============================================================================
# Instance-Based Configuration
# =============================================================================

@dataclass
class RetrieverConfig:
    """
    Instance-based configuration for Smart Code Retriever.

    Each ``RetrieverConfig`` is self-contained and is passed through the
    call stack, so several indexes with different settings can live in
    one process.

    Create from environment variables::

        config = RetrieverConfig.from_env()

    Or with explicit values::

        config = RetrieverConfig(use_embeddings=True, gemini_api_key="...")
    """

    # ── LLM Provider (answer generation) ──────────────────────────
    llm_provider: str = "gemini"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-haiku-4-5"
    llm_max_tokens: int = 2048
    llm_temperature: float = 0.7

    # ── Embedding Provider ────────────────────────────────────────
    embedding_provider: str = "gemini"
    gemini_embedding_model: str = "text-embedding-004"
    openai_embedding_model: str = "text-embedding-3-small"
    embedding_batch_size: int = 100

    # ── Retries (network collaborators only) ──────────────────────
    retry_attempts: int = 3
    retry_backoff_base: float = 2.0

    # ── File Processing ───────────────────────────────────────────
    target_extensions: frozenset = frozenset((".py",))
    exclude_dirs: frozenset = frozenset((
        "__pycache__", ".git", ".venv", "venv", ".tox",
        ".pytest_cache", ".mypy_cache", "dist", "build", "node_modules",
    ))
    max_file_size_mb: int = 5
    max_workers: int = 4

    # ── Retrieval ─────────────────────────────────────────────────
    use_embeddings: bool = False
    resolve_dependency_names: bool = False
    max_search_results: int = 10
    ask_context_results: int = 5
    hybrid_weights: Optional[Dict[str, float]] = None
    """Explicit weight override; when None the weights follow :attr:`use_embeddings`."""

    # ── Logging ───────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # ── Factory ───────────────────────────────────────────────────

    @classmethod
    def from_env(cls) -> "RetrieverConfig":
        """Build a config snapshot from current environment variables.

        ``GOOGLE_API_KEY`` is accepted as an alias for ``GEMINI_API_KEY``.
        """
        return cls(
            llm_provider=os.getenv("CODERETRIEVER_LLM_PROVIDER", "gemini").lower(),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-haiku-4-5"),
            llm_max_tokens=int(os.getenv("CODERETRIEVER_MAX_TOKENS", "2048")),
            embedding_provider=os.getenv("CODERETRIEVER_EMBEDDING_PROVIDER", "gemini").lower(),
            embedding_batch_size=int(os.getenv("CODERETRIEVER_EMBEDDING_BATCH_SIZE", "100")),
            use_embeddings=_env_flag("CODERETRIEVER_USE_EMBEDDINGS"),
            resolve_dependency_names=_env_flag("CODERETRIEVER_RESOLVE_DEPENDENCIES"),
            max_search_results=int(os.getenv("CODERETRIEVER_MAX_RESULTS", "10")),
            log_level=os.getenv("CODERETRIEVER_LOG_LEVEL", "INFO"),
        )

    # ── Validation & Accessors ────────────────────────────────────

    def validate(self) -> bool:
        """
        Validate provider names, the answer-generation API key, and the
        ranking parameters.

        The embedding key is only required when :attr:`use_embeddings` is
        set.  Raises :class:`~coderetriever.exceptions.ConfigError`.
        """
        from coderetriever.exceptions import ConfigError

        key_map = self._llm_key_map()
        if self.llm_provider not in key_map:
            raise ConfigError(
                f"Unknown LLM provider '{self.llm_provider}'. "
                f"Supported: {', '.join(key_map.keys())}.\n"
                "  Set via: export CODERETRIEVER_LLM_PROVIDER=gemini"
            )
        env_name, value = key_map[self.llm_provider]
        if not value:
            raise ConfigError(
                f"{env_name} not found (required by provider '{self.llm_provider}').\n"
                f"  Linux/Mac: export {env_name}='your-key-here'"
            )

        if self.use_embeddings:
            self.validate_embeddings()

        if self.embedding_batch_size <= 0:
            raise ConfigError("embedding_batch_size must be a positive integer.")
        if self.hybrid_weights is not None:
            unknown = set(self.hybrid_weights) - {"keyword", "dependency", "embedding"}
            if unknown:
                raise ConfigError(f"Unknown hybrid weight keys: {sorted(unknown)}")
        return True

    def validate_embeddings(self) -> bool:
        """Validate only the embedding provider settings."""
        from coderetriever.exceptions import ConfigError

        key_map = self._embedding_key_map()
        if self.embedding_provider not in key_map:
            raise ConfigError(
                f"Unknown embedding provider '{self.embedding_provider}'. "
                f"Supported: {', '.join(key_map.keys())}."
            )
        env_name, value = key_map[self.embedding_provider]
        if not value:
            raise ConfigError(
                f"{env_name} not found (required for embeddings via "
                f"'{self.embedding_provider}')."
            )
        return True

    def _llm_key_map(self) -> Dict[str, tuple]:
        return {
            "gemini":    ("GOOGLE_API_KEY",    self.gemini_api_key),
            "openai":    ("OPENAI_API_KEY",    self.openai_api_key),
            "anthropic": ("ANTHROPIC_API_KEY", self.anthropic_api_key),
        }

    def _embedding_key_map(self) -> Dict[str, tuple]:
        return {
            "gemini": ("GOOGLE_API_KEY", self.gemini_api_key),
            "openai": ("OPENAI_API_KEY", self.openai_api_key),
        }

    def get_api_key(self) -> Optional[str]:
        """Return the API key for the active answer-generation provider."""
        return {
            "gemini":    self.gemini_api_key,
            "openai":    self.openai_api_key,
            "anthropic": self.anthropic_api_key,
        }[self.llm_provider]

    def get_model(self) -> str:
        """Return the model name for the active answer-generation provider."""
        return {
            "gemini":    self.gemini_model,
            "openai":    self.openai_model,
            "anthropic": self.anthropic_model,
        }[self.llm_provider]

    def get_embedding_api_key(self) -> Optional[str]:
        """Return the API key for the active embedding provider."""
        return {
            "gemini": self.gemini_api_key,
            "openai": self.openai_api_key,
        }[self.embedding_provider]

    def get_embedding_model(self) -> str:
        """Return the embedding model name for the active embedding provider."""
        return {
            "gemini": self.gemini_embedding_model,
            "openai": self.openai_embedding_model,
        }[self.embedding_provider]

    def weights(self) -> Dict[str, float]:
        """Resolved hybrid weights for this configuration."""
        return resolve_weights(self.use_embeddings, self.hybrid_weights)

    def max_file_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


# =============================================================================
# System Prompts for LLM
# =============================================================================

class Prompts:
    """Standardized prompts for retrieval-augmented answers."""

    ANSWER_SYSTEM = (
        "You are an expert Python programming assistant.\n"
        "Your task is to answer questions about a user's codebase.\n"
        "Use the provided code context to give a precise and helpful answer."
    )

    ANSWER_USER = """=== Relevant Code Context ===

{context}
=== User Query ===
{query}"""

    CONTEXT_SEPARATOR = "--------------------\n"
    EMPTY_CONTEXT = "No relevant code context was found.\n"
