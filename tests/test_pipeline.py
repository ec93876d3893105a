"""End-to-end tests for the caller-facing operations on in-memory collaborators."""
import json
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from conftest import FakeLLM, FakeSearch
from topicrag.answer import NO_INFO_ANSWER
from topicrag.cache import SearchCache
from topicrag.errors import NoDataFoundError, NoTopicError, UpstreamError, ValidationError
from topicrag.pipeline import (
    answer, clear_history, delete_topic, ingest_topic, initialize, knowledge_stats,
    list_topics, new_session, set_active_topic, topic_stats,
)
from topicrag.session import Phase


class TestIngestTopic:
    def test_rust_scenario(self, ctx, state):
        result = ingest_topic(ctx, state, "Rust programming language")
        assert result.topic_id == "rust_programming_language"
        assert result.created is True
        assert result.total_chunks == 3
        assert result.sources == ["en.wikipedia.org", "doc.rust-lang.org"]
        assert state.phase is Phase.TOPIC_SET
        assert state.topic_id == "rust_programming_language"
        assert state.topic_name == "Rust programming language"

        stats = topic_stats(ctx, "rust_programming_language")
        assert stats["total_chunks"] == 3
        assert stats["sources"] == {"en.wikipedia.org": 1, "doc.rust-lang.org": 2}
        assert stats["chunk_types"] == {"search_result": 3}
        assert stats["collection_name"] == "topic_knowledge_rust_programming_language"

    def test_existing_topic_skips_research(self, ctx, state):
        ingest_topic(ctx, state, "Rust programming language")
        queries = len(ctx.search_fn.queries)
        again = ingest_topic(ctx, state, "rust programming language!")
        assert again.created is False
        assert again.total_chunks == 3
        assert len(ctx.search_fn.queries) == queries

    def test_invalid_name(self, ctx, state):
        with pytest.raises(ValidationError):
            ingest_topic(ctx, state, "")
        assert ctx.search_fn.queries == []

    def test_no_data(self, ctx, state):
        ctx.search_fn = FakeSearch(payload={"organic": []})
        with pytest.raises(NoDataFoundError):
            ingest_topic(ctx, state, "Obscure topic")
        assert state.phase is Phase.NO_TOPIC
        assert list_topics(ctx) == []

    def test_uses_cache(self, ctx, state, tmp_path):
        ctx.cache = SearchCache(str(tmp_path / "cache"))
        ingest_topic(ctx, state, "Rust")
        delete_topic(ctx, state, "rust")
        first = len(ctx.search_fn.queries)
        ingest_topic(ctx, state, "Rust")
        assert len(ctx.search_fn.queries) == first


class TestAnswer:
    def test_requires_topic(self, ctx, state):
        with pytest.raises(NoTopicError):
            answer(ctx, state, "What is Rust?")

    def test_rejects_empty_question(self, ctx, state):
        ingest_topic(ctx, state, "Rust programming language")
        with pytest.raises(ValidationError):
            answer(ctx, state, "   ")

    def test_answer_with_context(self, ctx, state, llm):
        ingest_topic(ctx, state, "Rust programming language")
        result = answer(ctx, state, "What is Rust ownership and the borrow checker?")
        assert result.answer == llm.reply
        assert result.topic == "rust_programming_language"
        assert result.chunks_used == 3
        assert set(result.sources) == {"en.wikipedia.org", "doc.rust-lang.org"}
        assert 0 <= result.confidence <= 100
        assert len(result.context_used) == 3
        assert all(c["content"].endswith("...") for c in result.context_used)

        call = llm.generate_calls[-1]
        assert call["temperature"] == 0.2
        assert call["max_tokens"] == 1024
        assert "--- CONTEXT START ---\nSource:" in call["prompt"]
        assert call["prompt"].endswith("--- QUESTION ---\nWhat is Rust ownership and the borrow checker?")

        assert [e.role for e in state.history] == ["user", "assistant"]

    def test_second_turn_includes_conversation(self, ctx, state, llm):
        ingest_topic(ctx, state, "Rust programming language")
        answer(ctx, state, "What is Rust?")
        answer(ctx, state, "Who made it?")
        assert "--- RECENT CONVERSATION ---\nuser: What is Rust?" in llm.generate_calls[-1]["prompt"]

    def test_strict_mode_without_chunks(self, ctx, state, llm):
        ctx.settings = replace(ctx.settings, allow_model_knowledge=False)
        ingest_topic(ctx, state, "Rust programming language")
        ctx.backend.fail_on.add("query")  # retrieval degrades to []
        result = answer(ctx, state, "What is Rust?")
        assert result.answer == NO_INFO_ANSWER
        assert result.sources == []
        assert result.chunks_used == 0
        assert result.confidence == 0
        assert llm.generate_calls == []

    def test_generation_failure(self, ctx, state):
        ingest_topic(ctx, state, "Rust programming language")
        ctx.llm.fail_generate = ConnectionError("ollama went away")
        with pytest.raises(UpstreamError) as exc:
            answer(ctx, state, "What is Rust?")
        assert isinstance(exc.value.__cause__, ConnectionError)
        assert state.history == []

    def test_upstream_error_not_rewrapped(self, ctx, state):
        ingest_topic(ctx, state, "Rust programming language")
        original = UpstreamError("timeout")
        ctx.llm.fail_generate = original
        with pytest.raises(UpstreamError) as exc:
            answer(ctx, state, "What is Rust?")
        assert exc.value is original

    def test_off_topic_warning(self, ctx, state):
        ingest_topic(ctx, state, "Rust programming language")
        result = answer(ctx, state, "best pizza dough hydration")
        assert any(w.startswith("Topic mismatch") for w in result.warnings)
        assert any(w.startswith("Low similarity") for w in result.warnings)

    def test_query_log(self, ctx, state):
        ingest_topic(ctx, state, "Rust programming language")
        answer(ctx, state, "What is Rust?")
        with open(ctx.settings.query_log_path, encoding="utf-8") as f:
            lines = [json.loads(line) for line in f]
        assert len(lines) == 1
        assert lines[0]["question"] == "What is Rust?"
        assert lines[0]["topic"] == "rust_programming_language"

    def test_metrics_report(self, ctx, state, tmp_path):
        path = tmp_path / "metrics.jsonl"
        ctx.settings = replace(ctx.settings, metrics_path=str(path))
        ingest_topic(ctx, state, "Rust programming language")
        answer(ctx, state, "What is Rust?")
        reports = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert [r["operation"] for r in reports] == ["ingest", "answer"]
        assert [s["name"] for s in reports[1]["steps"]] == ["retrieve", "analyze", "generate"]


class TestTopicManagement:
    def test_set_active_topic_by_id_and_name(self, ctx, state):
        ingest_topic(ctx, state, "Rust programming language")
        ingest_topic(ctx, state, "Go")
        assert state.topic_id == "go"
        assert set_active_topic(ctx, state, "Rust Programming Language") == "rust_programming_language"
        assert set_active_topic(ctx, state, "go") == "go"
        with pytest.raises(NoTopicError):
            set_active_topic(ctx, state, "Haskell")

    def test_switching_topic_clears_history(self, ctx, state):
        ingest_topic(ctx, state, "Rust programming language")
        ingest_topic(ctx, state, "Go")
        set_active_topic(ctx, state, "rust_programming_language")
        answer(ctx, state, "What is Rust?")
        assert len(state.history) == 2
        set_active_topic(ctx, state, "go")
        assert state.history == []

    def test_clear_history(self, ctx, state):
        ingest_topic(ctx, state, "Rust programming language")
        answer(ctx, state, "What is Rust?")
        clear_history(state)
        assert state.history == []
        assert state.phase is Phase.TOPIC_SET

    def test_delete_active_topic_resets_state(self, ctx, state):
        ingest_topic(ctx, state, "Rust programming language")
        assert delete_topic(ctx, state, "rust_programming_language") is True
        assert state.phase is Phase.NO_TOPIC
        assert list_topics(ctx) == []
        assert delete_topic(ctx, state, "rust_programming_language") is False

    def test_topic_stats_unknown(self, ctx):
        with pytest.raises(NoTopicError):
            topic_stats(ctx, "nope")

    def test_knowledge_stats(self, ctx, state):
        ingest_topic(ctx, state, "Rust programming language")
        stats = knowledge_stats(ctx)
        assert stats["topics"] == 1
        assert stats["total_chunks"] == 3
        assert stats["backend"] == "InMemory"
        assert stats["models"]["generation_model"]["name"] == "fake-gen"
        assert stats["configuration"]["search_templates"] == 3

    def test_new_session_uses_history_cap(self, settings):
        assert new_session(replace(settings, max_history_length=6)).max_history == 6


class TestInitialize:
    def test_pulls_missing_models_and_sweeps_cache(self, ctx):
        ctx.llm = FakeLLM(missing_models=["gemma3:4b"])
        ctx.cache = MagicMock()
        ctx.cache.sweep_expired.return_value = 2
        report = initialize(ctx)
        assert report["cache_removed"] == 2
        assert report["models_pulled"] == ["gemma3:4b"]
        assert ctx.llm.pulled == ["gemma3:4b"]

    def test_ollama_unreachable(self, ctx):
        ctx.llm = FakeLLM(connected=False)
        with pytest.raises(UpstreamError, match="connection refused"):
            initialize(ctx)

    def test_unhealthy_backend(self, ctx):
        ctx.backend = MagicMock()
        ctx.backend.health.return_value = False
        ctx.backend.name = "Broken"
        with pytest.raises(UpstreamError):
            initialize(ctx)
