"""Ollama client: embeddings, chat generation, model management.

Talks to the Ollama REST API through ``config.request_json`` so every call gets
the same retry policy and surfaces failures as ``UpstreamError``.
"""

from dataclasses import dataclass, field

from .config import log, request_json, OLLAMA_HOST, GENERATION_MODEL, EMBEDDING_MODEL
from .errors import UpstreamError


@dataclass
class GenerationResult:
    text: str
    usage: dict = field(default_factory=dict)


class OllamaClient:
    """Embedding + generation collaborator backed by a local Ollama server."""

    def __init__(self, host: str = None, generation_model: str = None,
                 embedding_model: str = None, timeout: float = 300):
        self.host = (host or OLLAMA_HOST).rstrip("/")
        self.generation_model = generation_model or GENERATION_MODEL
        self.embedding_model = embedding_model or EMBEDDING_MODEL
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.host}{path}"

    # ── Models ──

    def list_models(self) -> list[str]:
        data = request_json("GET", self._url("/api/tags"), timeout=15)
        return [m.get("name", "") for m in data.get("models", [])]

    def check_connection(self) -> dict:
        """Returns {"connected": bool, "missing_models": [...], "error": str}."""
        try:
            available = self.list_models()
        except UpstreamError as e:
            log.error("ollama connection failed: %s", e)
            return {"connected": False, "missing_models": [], "error": str(e)}
        required = [self.generation_model, self.embedding_model]
        missing = [m for m in required if not any(a.startswith(m) for a in available)]
        return {"connected": True, "missing_models": missing, "error": ""}

    def pull_model(self, model: str) -> dict:
        log.info("pulling model %s (this can take a while)", model)
        return request_json("POST", self._url("/api/pull"), {"model": model, "stream": False}, timeout=3600)

    def model_info(self) -> dict:
        return {
            "generation_model": {"name": self.generation_model},
            "embedding_model": {"name": self.embedding_model},
        }

    # ── Embeddings ──

    def embed(self, text: str) -> list[float]:
        data = request_json(
            "POST", self._url("/api/embeddings"),
            {"model": self.embedding_model, "prompt": text},
            timeout=self.timeout,
        )
        embedding = data.get("embedding")
        if not embedding:
            raise UpstreamError(f"empty embedding from {self.embedding_model}")
        return embedding

    # ── Generation ──

    def generate(self, system: str, prompt: str, temperature: float = 0.2,
                 max_tokens: int = 1024) -> GenerationResult:
        data = request_json(
            "POST", self._url("/api/chat"),
            {
                "model": self.generation_model,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            },
            timeout=self.timeout,
        )
        message = data.get("message") or {}
        content = message.get("content")
        if content is None:
            raise UpstreamError(f"invalid chat response payload: {data.get('error', data)}")
        return GenerationResult(
            text=content.strip(),
            usage={
                "eval_count": data.get("eval_count", 0),
                "prompt_eval_count": data.get("prompt_eval_count", 0),
                "total_duration": data.get("total_duration", 0),
            },
        )
