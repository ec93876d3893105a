"""Configuration: env vars, thresholds, logging, HTTP client."""

import os
import time
import logging
from dataclasses import dataclass, field
from pathlib import Path

import requests

from .errors import UpstreamError


def env(name: str, default: str = "") -> str:
    v = os.getenv(name, default)
    return v.strip() if isinstance(v, str) else v


def env_flag(name: str, default: bool) -> bool:
    return env(name, "1" if default else "0").lower() in ("1", "true", "yes", "on")


def load_env_file(path: str = ".env") -> int:
    """Load KEY=VALUE lines from a .env file without overriding the real env.

    Returns the number of keys read.
    """
    p = Path(path)
    if not p.exists():
        return 0
    count = 0
    for line in p.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            k, v = line.split("=", 1)
            os.environ.setdefault(k.strip(), v.strip().strip('"').strip("'"))
            count += 1
    return count


load_env_file(env("TOPICRAG_ENV_FILE", ".env"))


# ── Logging ──
log = logging.getLogger("topicrag")
if not log.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S"))
    log.addHandler(_h)
    log.setLevel(logging.DEBUG if os.getenv("TOPICRAG_DEBUG") else logging.INFO)


# ── Paths ──
DATA_PATH = env("TOPICRAG_DATA_PATH", str(Path.cwd() / "data"))
CACHE_DIR = env("TOPICRAG_CACHE_DIR", str(Path.cwd() / "cache"))
CHROMA_PATH = env("TOPICRAG_CHROMA_PATH", str(Path.cwd() / "chroma_db"))
COLLECTION_PREFIX = env("TOPICRAG_COLLECTION_PREFIX", "topic_knowledge")

# ── Ollama ──
OLLAMA_HOST = env("OLLAMA_HOST", "http://localhost:11434").rstrip("/")
GENERATION_MODEL = env("TOPICRAG_GENERATION_MODEL", "gemma3:4b")
EMBEDDING_MODEL = env("TOPICRAG_EMBEDDING_MODEL", "nomic-embed-text:latest")

# ── Search provider (Bright Data SERP proxy) ──
SEARCH_PROVIDER = env("TOPICRAG_SEARCH_PROVIDER", "brightdata")
BRIGHT_DATA_CUSTOMER_ID = env("BRIGHT_DATA_CUSTOMER_ID")
BRIGHT_DATA_ZONE = env("BRIGHT_DATA_ZONE")
BRIGHT_DATA_PASSWORD = env("BRIGHT_DATA_PASSWORD")
BRIGHT_DATA_PROXY_HOST = env("BRIGHT_DATA_PROXY_HOST", "brd.superproxy.io")
BRIGHT_DATA_PROXY_PORT = int(env("BRIGHT_DATA_PROXY_PORT", "33335"))

DEFAULT_SEARCH_TEMPLATES = (
    # fundamentals
    "what is {topic}?",
    "{topic} explained simply",
    "{topic} definition and overview",
    "{topic} beginner guide",
    # technical details
    "{topic} how it works",
    "{topic} architecture details",
    "{topic} technical specifications",
    "{topic} implementation guide",
    # practical applications
    "{topic} use cases examples",
    "{topic} real world applications",
    "companies using {topic}",
    "{topic} best practices",
    # comparisons
    "{topic} vs alternatives",
    "{topic} advantages disadvantages",
    "alternatives to {topic}",
    "{topic} comparison",
    # current state
    "{topic} latest news",
    "{topic} recent updates",
    "{topic} current state",
    "{topic} future outlook",
)

DEFAULT_TRUSTED_SOURCES = (
    "wikipedia.org",
    "github.com",
    "britannica.com",
    "stackoverflow.com",
    "developer.mozilla.org",
    ".gov",
    ".edu",
    "Google Knowledge Graph",
)

# Input bounds
TOPIC_MAX_LENGTH = 100
# Chroma collection names are 3-63 chars and include "{prefix}_"
COLLECTION_NAME_MAX_LEN = 63
TOPIC_ID_MAX_LEN = min(
    int(env("TOPICRAG_TOPIC_ID_MAX_LEN", "64")),
    COLLECTION_NAME_MAX_LEN - len(COLLECTION_PREFIX) - 1,
)
MAX_QUESTION_LENGTH = int(env("TOPICRAG_MAX_QUESTION_LENGTH", "2000"))

# HTTP retry (lightweight, dependency-free)
HTTP_RETRY_MAX = max(1, int(env("TOPICRAG_HTTP_RETRY_MAX", "3")))
HTTP_RETRY_BACKOFF_SEC = max(0.0, float(env("TOPICRAG_HTTP_RETRY_BACKOFF_SEC", "0.6")))


def _split_list(raw: str, sep: str = ",") -> tuple:
    return tuple(x.strip() for x in raw.split(sep) if x.strip())


@dataclass(frozen=True)
class RAGSettings:
    """Tunables for ingestion, retrieval, warnings and chat."""

    chunk_size: int = 400
    chunk_overlap: int = 50
    max_retrieved_chunks: int = 8
    max_context_length: int = 6000
    max_history_length: int = 20
    allow_model_knowledge: bool = True
    cache_ttl: float = 2 * 86400
    request_delay: float = 1.0
    embed_delay: float = 0.1
    search_result_count: int = 10
    low_similarity_threshold: float = 0.4
    topic_mismatch_threshold: float = 0.3
    enable_similarity_warning: bool = True
    enable_topic_mismatch_warning: bool = True
    search_templates: tuple = DEFAULT_SEARCH_TEMPLATES
    trusted_sources: tuple = DEFAULT_TRUSTED_SOURCES
    query_log_path: str = field(default_factory=lambda: os.path.join(DATA_PATH, "query_log.jsonl"))
    metrics_path: str = ""

    def __post_init__(self):
        if self.max_history_length < 1:
            raise ValueError(f"max_history_length must be at least 1 (got {self.max_history_length})")

    @classmethod
    def from_env(cls) -> "RAGSettings":
        templates = env("TOPICRAG_SEARCH_TEMPLATES")
        trusted = env("TOPICRAG_TRUSTED_SOURCES")
        return cls(
            chunk_size=int(env("TOPICRAG_CHUNK_SIZE", "400")),
            chunk_overlap=int(env("TOPICRAG_CHUNK_OVERLAP", "50")),
            max_retrieved_chunks=int(env("TOPICRAG_MAX_RETRIEVED_CHUNKS", "8")),
            max_context_length=int(env("TOPICRAG_MAX_CONTEXT_LENGTH", "6000")),
            max_history_length=int(env("TOPICRAG_MAX_HISTORY_LENGTH", "20")),
            allow_model_knowledge=env_flag("TOPICRAG_ALLOW_MODEL_KNOWLEDGE", True),
            cache_ttl=float(env("TOPICRAG_CACHE_EXPIRY_DAYS", "2")) * 86400,
            request_delay=float(env("TOPICRAG_REQUEST_DELAY_SEC", "1.0")),
            embed_delay=float(env("TOPICRAG_EMBED_DELAY_SEC", "0.1")),
            search_result_count=int(env("TOPICRAG_SEARCH_RESULT_COUNT", "10")),
            low_similarity_threshold=float(env("TOPICRAG_LOW_SIMILARITY_THRESHOLD", "0.4")),
            topic_mismatch_threshold=float(env("TOPICRAG_TOPIC_MISMATCH_THRESHOLD", "0.3")),
            enable_similarity_warning=env_flag("TOPICRAG_SIMILARITY_WARNING", True),
            enable_topic_mismatch_warning=env_flag("TOPICRAG_TOPIC_MISMATCH_WARNING", True),
            search_templates=_split_list(templates, "|") if templates else DEFAULT_SEARCH_TEMPLATES,
            trusted_sources=_split_list(trusted) if trusted else DEFAULT_TRUSTED_SOURCES,
            query_log_path=env("TOPICRAG_QUERY_LOG", os.path.join(DATA_PATH, "query_log.jsonl")),
            metrics_path=env("TOPICRAG_METRICS_PATH"),
        )


def validate_config() -> None:
    missing = []
    if SEARCH_PROVIDER == "brightdata":
        if not BRIGHT_DATA_CUSTOMER_ID:
            missing.append("BRIGHT_DATA_CUSTOMER_ID")
        if not BRIGHT_DATA_ZONE:
            missing.append("BRIGHT_DATA_ZONE")
        if not BRIGHT_DATA_PASSWORD:
            missing.append("BRIGHT_DATA_PASSWORD")
    if missing:
        raise RuntimeError(
            f"Missing required env vars: {', '.join(missing)}\n"
            f"Hint: copy .env.example to .env and fill in your Bright Data credentials."
        )


def _should_retry_http_error(err: Exception) -> bool:
    """Retry only transient transport/server failures."""
    if isinstance(err, requests.HTTPError):
        resp = getattr(err, "response", None)
        if resp is None:
            return True
        code = getattr(resp, "status_code", 0) or 0
        return code == 429 or code >= 500

    if isinstance(err, (requests.Timeout, requests.ConnectionError)):
        return True

    # Non-JSON payloads and 4xx answers are deterministic.
    return False


def request_json(method: str, url: str, payload: dict = None, timeout: float = 120) -> dict:
    """JSON request with lightweight retries. Raises UpstreamError when exhausted."""
    last_err = None
    retry_max = max(1, HTTP_RETRY_MAX)

    for attempt in range(1, retry_max + 1):
        try:
            r = requests.request(method, url, json=payload, timeout=timeout)
            r.raise_for_status()
            try:
                return r.json()
            except ValueError as e:
                ctype = r.headers.get("content-type", "")
                preview = (r.text or "")[:240].replace("\n", " ")
                raise UpstreamError(f"Non-JSON response from {url} (content-type={ctype}): {preview}") from e
        except Exception as e:
            last_err = e
            can_retry = attempt < retry_max and _should_retry_http_error(e)
            if not can_retry:
                break
            log.warning("http retry %d/%d url=%s error=%s", attempt, retry_max, url, e)
            time.sleep(HTTP_RETRY_BACKOFF_SEC * attempt)

    if isinstance(last_err, UpstreamError):
        raise last_err
    raise UpstreamError(f"request to {url} failed after retries: {last_err}") from last_err
