"""Shared fakes: a bag-of-words embedder, a scripted generator, canned SERP payloads."""
import hashlib
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from topicrag.backend_memory import InMemoryVectorBackend
from topicrag.config import RAGSettings
from topicrag.llm import GenerationResult
from topicrag.pipeline import RAGContext
from topicrag.session import ConversationState

DIM = 512


def bow_embed(text):
    """Deterministic bag-of-words vector (hashlib, not the randomized hash())."""
    vec = [0.0] * DIM
    for word in text.lower().split():
        word = "".join(ch for ch in word if ch.isalnum())
        if not word:
            continue
        vec[int(hashlib.md5(word.encode()).hexdigest(), 16) % DIM] += 1.0
    return vec


class FakeLLM:
    """Embedding + generation double with call logs."""

    def __init__(self, reply="Rust is a systems programming language.", fail_generate=None,
                 connected=True, missing_models=None):
        self.reply = reply
        self.fail_generate = fail_generate
        self.connected = connected
        self.missing_models = list(missing_models or [])
        self.embed_calls = []
        self.generate_calls = []
        self.pulled = []

    def embed(self, text):
        self.embed_calls.append(text)
        return bow_embed(text)

    def generate(self, system, prompt, temperature=0.2, max_tokens=1024):
        self.generate_calls.append({
            "system": system, "prompt": prompt,
            "temperature": temperature, "max_tokens": max_tokens,
        })
        if self.fail_generate is not None:
            raise self.fail_generate
        return GenerationResult(text=self.reply, usage={"eval_count": 12})

    def check_connection(self):
        if not self.connected:
            return {"connected": False, "missing_models": [], "error": "connection refused"}
        return {"connected": True, "missing_models": list(self.missing_models), "error": ""}

    def pull_model(self, model):
        self.pulled.append(model)
        return {"status": "success"}

    def model_info(self):
        return {"generation_model": {"name": "fake-gen"}, "embedding_model": {"name": "fake-embed"}}


RUST_SERP = {
    "organic": [
        {
            "title": "Rust (programming language)",
            "description": "Rust is a general-purpose programming language emphasizing performance, type safety and concurrency.",
            "display_link": "en.wikipedia.org",
            "link": "https://en.wikipedia.org/wiki/Rust_(programming_language)",
        },
        {
            "title": "The Rust Book",
            "description": "Ownership is the most unique feature of Rust and enables memory safety without a garbage collector.",
            "display_link": "doc.rust-lang.org",
            "link": "https://doc.rust-lang.org/book/",
        },
        {
            "title": "Rust borrow checker",
            "description": "The borrow checker enforces that references never outlive the data they point to.",
            "display_link": "doc.rust-lang.org",
            "link": "https://doc.rust-lang.org/book/ch04-02-references-and-borrowing.html",
        },
        {"title": "No description", "description": "", "display_link": "example.com", "link": "https://example.com"},
    ],
}


class FakeSearch:
    """Search provider double: same payload for every query unless told otherwise."""

    def __init__(self, payload=None, fail_queries=()):
        self.payload = RUST_SERP if payload is None else payload
        self.fail_queries = set(fail_queries)
        self.queries = []

    def __call__(self, query, result_count=10):
        self.queries.append(query)
        if query in self.fail_queries:
            raise RuntimeError(f"search failed for {query}")
        return self.payload


@pytest.fixture
def settings(tmp_path):
    return RAGSettings(
        request_delay=0,
        embed_delay=0,
        search_templates=("what is {topic}?", "{topic} explained simply", "{topic} beginner guide"),
        query_log_path=str(tmp_path / "query_log.jsonl"),
    )


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def backend():
    return InMemoryVectorBackend()


@pytest.fixture
def ctx(backend, llm, settings):
    return RAGContext(
        backend=backend,
        llm=llm,
        search_fn=FakeSearch(),
        cache=None,
        settings=settings,
        sleep=lambda _s: None,
    )


@pytest.fixture
def state(settings):
    return ConversationState(max_history=settings.max_history_length)
