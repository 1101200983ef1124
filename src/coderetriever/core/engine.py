"""
Smart Code Retriever Core Engine

Fragment data model, LLM and embedding provider abstraction, answer
generation, similarity helpers, and source-file discovery.
"""

import logging
import os
import time
from dataclasses import dataclass, asdict, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Dict, Any, Sequence

import numpy as np
from rapidfuzz.distance import JaroWinkler

from coderetriever.core.config import Prompts, RetrieverConfig
from coderetriever.exceptions import EmbeddingError, ProviderError

# Application code (CLI, MCP server) is responsible for configuring logging.
logger = logging.getLogger(__name__)


# =============================================================================
# Data Models
# =============================================================================

class FragmentKind(str, Enum):
    """Closed set of code-unit kinds produced by the parser."""
    CLASS = "CLASS"
    INTERFACE = "INTERFACE"
    METHOD = "METHOD"
    FIELD = "FIELD"
    ENUM = "ENUM"


@dataclass(eq=False)
class CodeFragment:
    """One parsed code unit (class, interface, method, field, enum).

    Equality and hashing use :attr:`id` only, so fragments can key the
    score maps built by every retrieval strategy.
    """
    id: str
    kind: FragmentKind
    name: str
    signature: Optional[str] = None
    content: Optional[str] = None
    file_path: str = ""
    start_line: int = 0
    end_line: int = 0
    package_name: Optional[str] = None
    documentation: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)
    embedding: Optional[List[float]] = None
    """Absent until attached by :meth:`CodeIndex.finalize_embeddings`."""

    def __post_init__(self):
        # Accept any float sequence (e.g. numpy arrays); stored as a list
        if self.embedding is not None:
            self.embedding = [float(v) for v in self.embedding]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CodeFragment):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.name} ({self.file_path})"

    @property
    def has_documentation(self) -> bool:
        return bool(self.documentation)

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and len(self.embedding) > 0

    def to_context_string(self) -> str:
        """Text block used for LLM prompts and as the embedding input."""
        parts = [
            f"# File: {self.file_path}\n",
            f"# Lines: {self.start_line}-{self.end_line}\n",
        ]
        if self.documentation:
            parts.append(f"{self.documentation}\n")
        if self.signature:
            parts.append(f"{self.signature}\n")
        else:
            parts.append(f"{self.content}\n")
        return "".join(parts)

    def to_dict(self, include_embedding: bool = False) -> dict:
        """Return a JSON-serializable dict (kind by name)."""
        data = asdict(self)
        data["kind"] = self.kind.value
        if not include_embedding:
            data.pop("embedding", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CodeFragment":
        """Build a fragment from :meth:`to_dict` output or an external dump."""
        return cls(
            id=data["id"],
            kind=FragmentKind(str(data["kind"]).upper()),
            name=data["name"],
            signature=data.get("signature"),
            content=data.get("content"),
            file_path=data.get("file_path", ""),
            start_line=int(data.get("start_line", 0)),
            end_line=int(data.get("end_line", 0)),
            package_name=data.get("package_name"),
            documentation=data.get("documentation"),
            dependencies=list(data.get("dependencies") or []),
            embedding=data.get("embedding"),
        )


@dataclass
class ScoredFragment:
    """A (fragment, score) pair produced by a retrieval strategy."""
    fragment: CodeFragment
    score: float

    def __lt__(self, other):
        return self.score > other.score  # Higher score = better


@dataclass
class SearchResult:
    """Display-oriented search hit returned by the facade, CLI and MCP server."""
    fragment_id: str
    name: str
    kind: str
    file_path: str
    start_line: int
    end_line: int
    score: float
    rank: int
    strategy: str
    package_name: str = ""
    signature: str = ""
    context: str = ""

    @classmethod
    def from_scored(cls, scored: ScoredFragment, rank: int, strategy: str) -> "SearchResult":
        fragment = scored.fragment
        return cls(
            fragment_id=fragment.id,
            name=fragment.name,
            kind=fragment.kind.value,
            file_path=fragment.file_path,
            start_line=fragment.start_line,
            end_line=fragment.end_line,
            score=scored.score,
            rank=rank,
            strategy=strategy,
            package_name=fragment.package_name or "",
            signature=fragment.signature or "",
            context=fragment.documentation or "",
        )

    def to_dict(self) -> dict:
        """Return a JSON-serializable dict for API/agent pipelines."""
        return asdict(self)


@dataclass
class IndexResult:
    """Statistics of one in-memory indexing run."""
    files_scanned: int = 0
    files_parsed: int = 0
    parse_errors: int = 0
    fragments_total: int = 0
    fragments_by_kind: Dict[str, int] = field(default_factory=dict)
    fragments_embedded: int = 0
    embedding_batches_failed: int = 0
    embeddings_enabled: bool = False
    root_dir: str = ""

    def to_dict(self) -> dict:
        """Return a JSON-serializable dict for API/agent pipelines."""
        return asdict(self)


# =============================================================================
# Similarity helpers
# =============================================================================

def name_similarity(term: str, name: str) -> float:
    """Jaro-Winkler similarity in [0, 1] between a query term and a name."""
    if not term or not name:
        return 0.0
    return JaroWinkler.similarity(term, name)


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """
    Cosine similarity of two equal-length vectors.

    Zero-norm vectors have similarity 0.  Raises ``ValueError`` when the
    dimensions differ.
    """
    a = np.asarray(vec_a, dtype=float)
    b = np.asarray(vec_b, dtype=float)
    if a.shape != b.shape:
        raise ValueError(f"Vector dimensions differ: {a.shape} vs {b.shape}")
    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


# =============================================================================
# LLM Provider Abstraction (answer generation)
# =============================================================================

class LLMProvider:
    """
    Abstract base for LLM API providers.

    Each subclass wraps a single vendor SDK and exposes a uniform
    ``complete(system, user_message, ...)`` interface so that the rest
    of the codebase never imports a vendor SDK directly.
    """

    provider_name: str = "LLM"

    def complete(
        self,
        system: str,
        user_message: str,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> str:
        """Return the assistant's text response for the given prompts."""
        raise NotImplementedError


class GeminiProvider(LLMProvider):
    """Google Gemini provider — uses the ``google-genai`` SDK."""

    provider_name = "Google (Gemini)"

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash"):
        try:
            from google import genai  # Lazy import
        except (ImportError, ModuleNotFoundError) as exc:
            raise ImportError(
                "The 'google-genai' SDK is not installed.\n"
                "  Install:  pip install 'smart-code-retriever[gemini]'\n"
                "  Or switch provider:  export CODERETRIEVER_LLM_PROVIDER=openai"
            ) from exc
        self.client = genai.Client(api_key=api_key)
        self.model = model

    def complete(self, system: str, user_message: str,
                 max_tokens: int = 2048,
                 temperature: float = 0.7) -> str:
        from google.genai import types

        response = self.client.models.generate_content(
            model=self.model,
            contents=user_message,
            config=types.GenerateContentConfig(
                system_instruction=system,
                max_output_tokens=max_tokens,
                temperature=temperature,
            ),
        )
        return response.text.strip()


class OpenAIProvider(LLMProvider):
    """OpenAI (GPT) provider — uses the ``openai`` SDK."""

    provider_name = "OpenAI (GPT)"

    def __init__(self, api_key: str, model: str = "gpt-4o-mini"):
        try:
            import openai  # Lazy import
        except (ImportError, ModuleNotFoundError) as exc:
            raise ImportError(
                "The 'openai' SDK is not installed.\n"
                "  Install:  pip install 'smart-code-retriever[openai]'\n"
                "  Or switch provider:  export CODERETRIEVER_LLM_PROVIDER=gemini"
            ) from exc
        self.client = openai.OpenAI(api_key=api_key)
        self.model = model

    def complete(self, system: str, user_message: str,
                 max_tokens: int = 2048,
                 temperature: float = 0.7) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user_message},
            ],
        )
        return response.choices[0].message.content.strip()


class AnthropicProvider(LLMProvider):
    """Anthropic (Claude) provider — uses the ``anthropic`` SDK."""

    provider_name = "Anthropic (Claude)"

    def __init__(self, api_key: str, model: str = "claude-haiku-4-5"):
        try:
            import anthropic  # Lazy import
        except (ImportError, ModuleNotFoundError) as exc:
            raise ImportError(
                "The 'anthropic' SDK is not installed.\n"
                "  Install:  pip install 'smart-code-retriever[anthropic]'\n"
                "  Or switch provider:  export CODERETRIEVER_LLM_PROVIDER=gemini"
            ) from exc
        self.client = anthropic.Anthropic(api_key=api_key)
        self.model = model

    def complete(self, system: str, user_message: str,
                 max_tokens: int = 2048,
                 temperature: float = 0.7) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": user_message}],
        )
        return response.content[0].text.strip()


# Provider registry — maps config name → class
_PROVIDER_REGISTRY: Dict[str, type] = {
    "gemini": GeminiProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
}


def _create_provider(config: RetrieverConfig | None = None,
                     provider: str | None = None) -> LLMProvider:
    """
    Factory that instantiates the correct :class:`LLMProvider`.

    Provider name, API key, and model are read from *config*; falls back
    to ``RetrieverConfig.from_env()`` when no config is given.
    """
    cfg = config or RetrieverConfig.from_env()
    provider = (provider or cfg.llm_provider).lower()
    if provider not in _PROVIDER_REGISTRY:
        raise ValueError(
            f"Unknown LLM provider '{provider}'. "
            f"Supported: {', '.join(_PROVIDER_REGISTRY)}"
        )
    model_map = {
        "gemini": cfg.gemini_model,
        "openai": cfg.openai_model,
        "anthropic": cfg.anthropic_model,
    }
    api_key = {
        "gemini": cfg.gemini_api_key,
        "openai": cfg.openai_api_key,
        "anthropic": cfg.anthropic_api_key,
    }[provider]
    return _PROVIDER_REGISTRY[provider](api_key=api_key, model=model_map[provider])


# =============================================================================
# Embedding Provider Abstraction
# =============================================================================

class EmbeddingProvider:
    """
    Capability that turns text into vectors.

    ``embed`` returns one vector per input text, in input order.
    Implementations raise :class:`ProviderError` on API failure; the
    retrieval layer downgrades any failure to "signal unavailable".
    """

    provider_name: str = "none"

    def is_available(self) -> bool:
        raise NotImplementedError

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        raise NotImplementedError


class NullEmbeddingProvider(EmbeddingProvider):
    """Embedding capability used when embeddings are disabled."""

    provider_name = "disabled"

    def is_available(self) -> bool:
        return False

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        return []


class GeminiEmbeddingProvider(EmbeddingProvider):
    """Gemini embeddings via ``google-genai`` (client created on first use)."""

    provider_name = "Google (Gemini embeddings)"

    def __init__(self, api_key: str | None, model: str = "text-embedding-004"):
        self.api_key = api_key
        self.model = model
        self._client = None

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _ensure_client(self):
        if self._client is None:
            try:
                from google import genai  # Lazy import
            except (ImportError, ModuleNotFoundError) as exc:
                raise ProviderError(
                    "The 'google-genai' SDK is not installed.\n"
                    "  Install:  pip install 'smart-code-retriever[gemini]'"
                ) from exc
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not self.is_available():
            raise ProviderError("Google API key not configured")
        if not texts:
            return []
        logger.info(f"Generating {len(texts)} embeddings using model {self.model}")
        try:
            response = self._ensure_client().models.embed_content(
                model=self.model,
                contents=list(texts),
            )
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(f"Gemini embedding request failed: {exc}") from exc
        return [list(e.values) for e in (response.embeddings or [])]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings via the ``openai`` SDK (client created on first use)."""

    provider_name = "OpenAI (embeddings)"

    def __init__(self, api_key: str | None, model: str = "text-embedding-3-small"):
        self.api_key = api_key
        self.model = model
        self._client = None

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _ensure_client(self):
        if self._client is None:
            try:
                import openai  # Lazy import
            except (ImportError, ModuleNotFoundError) as exc:
                raise ProviderError(
                    "The 'openai' SDK is not installed.\n"
                    "  Install:  pip install 'smart-code-retriever[openai]'"
                ) from exc
            self._client = openai.OpenAI(api_key=self.api_key)
        return self._client

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not self.is_available():
            raise ProviderError("OpenAI API key not configured")
        if not texts:
            return []
        logger.info(f"Generating {len(texts)} embeddings using model {self.model}")
        try:
            response = self._ensure_client().embeddings.create(
                model=self.model,
                input=list(texts),
            )
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(f"OpenAI embedding request failed: {exc}") from exc
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


_EMBEDDING_REGISTRY: Dict[str, type] = {
    "gemini": GeminiEmbeddingProvider,
    "openai": OpenAIEmbeddingProvider,
}


def create_embedding_provider(config: RetrieverConfig | None = None) -> EmbeddingProvider:
    """
    Build the embedding capability for *config*.

    Returns a :class:`NullEmbeddingProvider` when embeddings are disabled,
    so callers never need to special-case ``None``.
    """
    cfg = config or RetrieverConfig.from_env()
    if not cfg.use_embeddings:
        return NullEmbeddingProvider()
    name = cfg.embedding_provider.lower()
    if name not in _EMBEDDING_REGISTRY:
        raise ValueError(
            f"Unknown embedding provider '{name}'. "
            f"Supported: {', '.join(_EMBEDDING_REGISTRY)}"
        )
    return _EMBEDDING_REGISTRY[name](
        api_key=cfg.get_embedding_api_key(),
        model=cfg.get_embedding_model(),
    )


def validate_vectors(vectors: Any, expected: int) -> List[List[float]]:
    """
    Check that *vectors* holds *expected* non-empty numeric vectors.

    Raises :class:`EmbeddingError` on malformed provider output.
    """
    if vectors is None or len(vectors) != expected:
        got = 0 if vectors is None else len(vectors)
        raise EmbeddingError(f"Expected {expected} vectors, got {got}")
    checked: List[List[float]] = []
    for vec in vectors:
        try:
            values = [float(v) for v in vec]
        except (TypeError, ValueError) as exc:
            raise EmbeddingError(f"Non-numeric embedding vector: {exc}") from exc
        if not values:
            raise EmbeddingError("Empty embedding vector")
        checked.append(values)
    return checked


# =============================================================================
# Retrieval-augmented answers
# =============================================================================

class AnswerGenerator:
    """
    Sends a question plus retrieved code context to the configured LLM.

    The LLM provider is created **lazily** on first use, so constructing
    an ``AnswerGenerator`` does not require an SDK or API key until an
    answer is actually requested.
    """

    def __init__(self, config: RetrieverConfig | None = None,
                 provider: LLMProvider | None = None):
        self._config = config or RetrieverConfig.from_env()
        self.llm: LLMProvider | None = provider

    def is_available(self) -> bool:
        """True when a provider was injected or an API key is configured."""
        if self.llm is not None:
            return True
        try:
            return bool(self._config.get_api_key())
        except KeyError:
            return False

    @property
    def provider_name(self) -> str:
        if self.llm is not None:
            return self.llm.provider_name
        return self._config.llm_provider

    def _ensure_llm(self) -> LLMProvider:
        if self.llm is None:
            self.llm = _create_provider(config=self._config)
        return self.llm

    @staticmethod
    def build_prompt(query: str, context: Sequence[CodeFragment]) -> str:
        """Render the user message: code context blocks, then the question."""
        if context:
            blocks = "".join(
                fragment.to_context_string() + Prompts.CONTEXT_SEPARATOR
                for fragment in context
            )
        else:
            blocks = Prompts.EMPTY_CONTEXT
        return Prompts.ANSWER_USER.format(context=blocks, query=query)

    def answer(self, query: str, context: Sequence[CodeFragment]) -> str:
        """
        Return the LLM's answer to *query* grounded on *context*.

        Retries API errors up to ``retry_attempts`` with exponential
        backoff, then raises :class:`ProviderError`.
        """
        if not self.is_available():
            raise ProviderError(
                f"LLM provider '{self._config.llm_provider}' is not configured."
            )

        cfg = self._config
        logger.info(f"Sending query to {self.provider_name} (context size: {len(context)} elements)")
        user_message = self.build_prompt(query, context)

        last_error: Exception | None = None
        for attempt in range(1, cfg.retry_attempts + 1):
            try:
                return self._ensure_llm().complete(
                    system=Prompts.ANSWER_SYSTEM,
                    user_message=user_message,
                    max_tokens=cfg.llm_max_tokens,
                    temperature=cfg.llm_temperature,
                )
            except ImportError as exc:
                raise ProviderError(str(exc)) from exc
            except Exception as exc:
                last_error = exc
                logger.warning(
                    f"API error on attempt {attempt}/{cfg.retry_attempts}: {exc}"
                )

            if attempt < cfg.retry_attempts:
                time.sleep(cfg.retry_backoff_base ** (attempt - 1))

        raise ProviderError(
            f"Failed to communicate with {self.provider_name} after "
            f"{cfg.retry_attempts} attempts: {last_error}"
        ) from last_error


# =============================================================================
# Utility Functions
# =============================================================================

def scan_directory(root_path: Path, config: RetrieverConfig | None = None) -> List[Path]:
    """
    Recursively scan for source files.

    Uses :func:`os.walk` with early directory pruning so that excluded
    subtrees (e.g. ``.git/``, ``__pycache__/``) are never entered.
    Respects ``config.target_extensions`` and ``config.exclude_dirs``.
    """
    cfg = config or RetrieverConfig.from_env()
    source_files: List[Path] = []
    exclude = cfg.exclude_dirs
    extensions = cfg.target_extensions
    max_bytes = cfg.max_file_bytes()

    for dirpath, dirnames, filenames in os.walk(root_path):
        # Prune in place so os.walk never descends into excluded dirs
        dirnames[:] = [d for d in dirnames if d not in exclude]

        for fname in filenames:
            _, ext = os.path.splitext(fname)
            if ext not in extensions:
                continue

            full = os.path.join(dirpath, fname)
            try:
                size = os.path.getsize(full)
            except OSError:
                continue

            if size <= max_bytes:
                source_files.append(Path(full))
            else:
                logger.warning(
                    f"Skipping large file: {full} ({size / (1024 * 1024):.1f}MB)"
                )

    source_files.sort()
    return source_files
