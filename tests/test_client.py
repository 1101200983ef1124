"""
Tests for the client API (coderetriever.client.CodeRetriever).

Covers the public facade: index(), load(), search(), ask(), stats(),
async variants, config construction, and IndexNotBuiltError when no
index exists.
"""

from unittest.mock import MagicMock, patch

import pytest

from coderetriever import (
    CodeRetriever,
    IndexNotBuiltError,
    RetrievalError,
    RetrieverConfig,
    health,
)
from coderetriever.core.parser import dump_fragments


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def config():
    """Config with embeddings off and a dummy LLM key (no real API calls)."""
    return RetrieverConfig(gemini_api_key="test-key", use_embeddings=False, max_workers=2)


@pytest.fixture
def llm():
    provider = MagicMock()
    provider.provider_name = "Mock LLM"
    provider.complete.return_value = "Users live in UserRepository."
    return provider


@pytest.fixture
def client(config, llm):
    return CodeRetriever(config=config, llm_provider=llm)


@pytest.fixture
def indexed(client, tmp_project):
    client.index(tmp_project)
    return client


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:

    def test_explicit_config(self, config):
        client = CodeRetriever(config=config)
        assert client.config is config
        assert client.strategy_name == "Hybrid (Keyword + Dependency)"

    def test_keyword_overrides(self, monkeypatch):
        monkeypatch.delenv("CODERETRIEVER_USE_EMBEDDINGS", raising=False)
        client = CodeRetriever(max_search_results=3)
        assert client.config.max_search_results == 3

    def test_embeddings_change_strategy_name(self, fake_embeddings):
        config = RetrieverConfig(use_embeddings=True)
        client = CodeRetriever(config=config, embedding_provider=fake_embeddings())
        assert client.strategy_name == "Hybrid (Keyword + Dependency + Semantic)"

    def test_strategy_uses_config_weights(self):
        config = RetrieverConfig(hybrid_weights={"keyword": 0.9, "dependency": 0.1})
        client = CodeRetriever(config=config)
        assert client._strategy.weights == config.weights() == {"keyword": 0.9, "dependency": 0.1}
        assert CodeRetriever(config=RetrieverConfig())._strategy.weights == RetrieverConfig().weights()

    def test_validate_on_init(self):
        with pytest.raises(ValueError):
            CodeRetriever(config=RetrieverConfig(llm_provider="nope"), validate_on_init=True)


# =============================================================================
# Indexing & search
# =============================================================================


class TestIndexAndSearch:

    def test_search_before_index(self, client, tmp_project):
        with pytest.raises(IndexNotBuiltError):
            client.search("user", path=tmp_project)

    def test_index_result(self, client, tmp_project):
        result = client.index(tmp_project)
        assert result.fragments_total == 11
        assert result.parse_errors == 1

    def test_search_returns_ranked_results(self, indexed, tmp_project):
        results = indexed.search("user repository database", path=tmp_project)
        assert results
        assert results[0].name == "UserRepository"
        assert [r.rank for r in results] == list(range(1, len(results) + 1))
        assert all(r.strategy == "Hybrid (Keyword + Dependency)" for r in results)

    def test_max_results(self, indexed, tmp_project):
        assert len(indexed.search("user", path=tmp_project, max_results=2)) <= 2

    def test_index_is_per_path(self, indexed, tmp_path):
        other = tmp_path / "elsewhere"
        other.mkdir()
        with pytest.raises(IndexNotBuiltError):
            indexed.search("user", path=other)

    def test_load_fragment_dump(self, client, user_repository_fragments, tmp_path):
        dump = tmp_path / "frags.json"
        dump_fragments(user_repository_fragments, dump)
        result = client.load(dump)
        assert result.fragments_total == 3
        hits = client.search("database connection", path=tmp_path)
        assert hits[0].fragment_id == "app.repo.UserRepository"

    def test_stats(self, indexed, tmp_project):
        stats = indexed.stats(tmp_project)
        assert stats["fragments_total"] == 11
        assert stats["fragments_by_kind"]["ENUM"] == 1
        assert stats["packages"] == 2
        assert stats["strategy"] == indexed.strategy_name

    def test_retrieve_returns_fragments(self, indexed, tmp_project):
        fragments = indexed.retrieve("user repository", path=tmp_project, max_results=3)
        assert fragments[0].id == "app.models.UserRepository"
        assert indexed.get_index(tmp_project).get(fragments[0].id) is fragments[0]

    def test_unexpected_ranking_failure(self, indexed, tmp_project):
        with patch.object(indexed._strategy, "retrieve_scored", side_effect=KeyError("boom")):
            with pytest.raises(RetrievalError, match="boom"):
                indexed.search("user", path=tmp_project)

    def test_stats_without_index(self, client, tmp_path):
        with pytest.raises(IndexNotBuiltError):
            client.stats(tmp_path)


# =============================================================================
# Question answering
# =============================================================================


class TestAsk:

    def test_ask_sends_retrieved_context(self, indexed, tmp_project, llm):
        answer = indexed.ask("How are users stored in the database?", path=tmp_project)
        assert answer == "Users live in UserRepository."
        user_message = llm.complete.call_args.kwargs["user_message"]
        assert "=== Relevant Code Context ===" in user_message
        assert "class UserRepository(BaseRepository)" in user_message

    def test_ask_with_context_ranks_once(self, indexed, tmp_project):
        strategy = indexed._strategy
        with patch.object(strategy, "retrieve_scored", wraps=strategy.retrieve_scored) as ranked:
            answer, context = indexed.ask_with_context("user repository", path=tmp_project)
        assert ranked.call_count == 1
        assert answer == "Users live in UserRepository."
        assert "app.models.UserRepository" in [f.id for f in context]

    def test_ask_before_index(self, client, tmp_path):
        with pytest.raises(IndexNotBuiltError):
            client.ask("anything", path=tmp_path)


# =============================================================================
# Async variants
# =============================================================================


class TestAsync:

    @pytest.mark.asyncio
    async def test_aindex_and_asearch(self, client, tmp_project):
        result = await client.aindex(tmp_project)
        assert result.fragments_total == 11
        hits = await client.asearch("user repository", path=tmp_project)
        assert hits

    @pytest.mark.asyncio
    async def test_asearch_raises_same_errors(self, client, tmp_path):
        with pytest.raises(IndexNotBuiltError):
            await client.asearch("user", path=tmp_path)

    @pytest.mark.asyncio
    async def test_aask(self, indexed, tmp_project):
        assert await indexed.aask("explain users", path=tmp_project) == "Users live in UserRepository."

    @pytest.mark.asyncio
    async def test_astats(self, indexed, tmp_project):
        stats = await indexed.astats(tmp_project)
        assert stats["fragments_total"] == 11


# =============================================================================
# Health
# =============================================================================


class TestHealth:

    def test_client_health(self, indexed, tmp_project):
        status = indexed.health()
        assert status["version"] == "1.0.0"
        assert status["embeddings_enabled"] is False
        assert status["embedding_provider"] == "disabled"
        assert status["indexed_paths"] == [str(tmp_project.resolve())]

    def test_module_health(self, config):
        assert health(config) == {
            "version": "1.0.0",
            "llm_provider": "gemini",
            "embeddings_enabled": False,
        }
