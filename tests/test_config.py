"""
Tests for coderetriever.core.config — RetrieverConfig, weight sets, Prompts.
"""

import pytest

from coderetriever.core.config import (
    WEIGHTS_WITH_EMBEDDINGS,
    WEIGHTS_WITHOUT_EMBEDDINGS,
    Prompts,
    RetrieverConfig,
    resolve_weights,
)
from coderetriever.exceptions import ConfigError


class TestDefaults:

    def test_retrieval_defaults(self):
        cfg = RetrieverConfig()
        assert cfg.use_embeddings is False
        assert cfg.resolve_dependency_names is False
        assert cfg.embedding_batch_size == 100
        assert cfg.max_search_results == 10
        assert ".py" in cfg.target_extensions
        assert "__pycache__" in cfg.exclude_dirs

    def test_weight_sets_sum_to_one(self):
        assert sum(WEIGHTS_WITH_EMBEDDINGS.values()) == pytest.approx(1.0)
        assert sum(WEIGHTS_WITHOUT_EMBEDDINGS.values()) == pytest.approx(1.0)

    def test_weights_follow_embedding_flag(self):
        assert RetrieverConfig(use_embeddings=False).weights() == WEIGHTS_WITHOUT_EMBEDDINGS
        assert RetrieverConfig(use_embeddings=True).weights() == WEIGHTS_WITH_EMBEDDINGS

    def test_weights_override(self):
        cfg = RetrieverConfig(hybrid_weights={"keyword": 1.0})
        assert cfg.weights() == {"keyword": 1.0}

    def test_weights_are_copies(self):
        cfg = RetrieverConfig()
        cfg.weights()["keyword"] = 99
        assert cfg.weights()["keyword"] == 0.6

    def test_resolve_weights(self):
        assert resolve_weights(False) == WEIGHTS_WITHOUT_EMBEDDINGS
        assert resolve_weights(True) == WEIGHTS_WITH_EMBEDDINGS
        assert resolve_weights(True, {"keyword": 1.0}) == {"keyword": 1.0}

    def test_max_file_bytes(self):
        assert RetrieverConfig(max_file_size_mb=2).max_file_bytes() == 2 * 1024 * 1024


class TestFromEnv:

    def test_reads_flags(self, monkeypatch):
        monkeypatch.setenv("CODERETRIEVER_USE_EMBEDDINGS", "yes")
        monkeypatch.setenv("CODERETRIEVER_RESOLVE_DEPENDENCIES", "1")
        monkeypatch.setenv("CODERETRIEVER_EMBEDDING_BATCH_SIZE", "25")
        monkeypatch.setenv("CODERETRIEVER_LLM_PROVIDER", "OpenAI")
        cfg = RetrieverConfig.from_env()
        assert cfg.use_embeddings is True
        assert cfg.resolve_dependency_names is True
        assert cfg.embedding_batch_size == 25
        assert cfg.llm_provider == "openai"

    def test_flags_default_off(self, monkeypatch):
        monkeypatch.delenv("CODERETRIEVER_USE_EMBEDDINGS", raising=False)
        monkeypatch.setenv("CODERETRIEVER_RESOLVE_DEPENDENCIES", "off")
        cfg = RetrieverConfig.from_env()
        assert cfg.use_embeddings is False
        assert cfg.resolve_dependency_names is False

    def test_google_api_key_alias(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.setenv("GOOGLE_API_KEY", "google-key")
        assert RetrieverConfig.from_env().gemini_api_key == "google-key"


class TestValidate:

    def test_valid(self):
        assert RetrieverConfig(gemini_api_key="k").validate() is True

    def test_unknown_provider(self):
        with pytest.raises(ConfigError):
            RetrieverConfig(llm_provider="nope").validate()

    def test_missing_key(self):
        with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
            RetrieverConfig(llm_provider="openai", openai_api_key=None).validate()

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            RetrieverConfig(llm_provider="anthropic", anthropic_api_key=None).validate()

    def test_embedding_key_checked_only_when_enabled(self):
        cfg = RetrieverConfig(gemini_api_key="k", embedding_provider="openai", openai_api_key=None)
        assert cfg.validate() is True
        cfg.use_embeddings = True
        with pytest.raises(ConfigError):
            cfg.validate()

    def test_unknown_embedding_provider(self):
        with pytest.raises(ConfigError):
            RetrieverConfig(embedding_provider="nope").validate_embeddings()

    def test_batch_size_positive(self):
        with pytest.raises(ConfigError):
            RetrieverConfig(gemini_api_key="k", embedding_batch_size=0).validate()

    def test_unknown_weight_keys(self):
        with pytest.raises(ConfigError):
            RetrieverConfig(gemini_api_key="k", hybrid_weights={"vibes": 1.0}).validate()


class TestAccessors:

    @pytest.mark.parametrize("provider", ["anthropic", "openai", "gemini"])
    def test_key_and_model_per_provider(self, provider):
        cfg = RetrieverConfig(
            llm_provider=provider,
            anthropic_api_key="a", openai_api_key="o", gemini_api_key="g",
        )
        assert cfg.get_api_key() == provider[0]
        assert cfg.get_model()

    def test_embedding_accessors(self):
        cfg = RetrieverConfig(embedding_provider="openai", openai_api_key="o")
        assert cfg.get_embedding_api_key() == "o"
        assert cfg.get_embedding_model() == "text-embedding-3-small"


class TestPrompts:

    def test_user_template_places_query_last(self):
        rendered = Prompts.ANSWER_USER.format(context="CTX", query="Q?")
        assert rendered.index("CTX") < rendered.index("Q?")
        assert rendered.endswith("Q?")
