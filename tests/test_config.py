"""Tests for env loading, settings, validation and the HTTP retry policy."""
import os
import unittest
from unittest.mock import MagicMock, patch

import pytest
import requests

from topicrag import config
from topicrag.config import (
    DEFAULT_SEARCH_TEMPLATES, RAGSettings, _should_retry_http_error, load_env_file, request_json,
)
from topicrag.errors import UpstreamError


def _http_error(status):
    resp = MagicMock()
    resp.status_code = status
    return requests.HTTPError(response=resp)


class TestRetryPolicy(unittest.TestCase):

    def test_retryable(self):
        self.assertTrue(_should_retry_http_error(_http_error(429)))
        self.assertTrue(_should_retry_http_error(_http_error(503)))
        self.assertTrue(_should_retry_http_error(requests.Timeout()))
        self.assertTrue(_should_retry_http_error(requests.ConnectionError()))

    def test_not_retryable(self):
        self.assertFalse(_should_retry_http_error(_http_error(404)))
        self.assertFalse(_should_retry_http_error(ValueError("bad json")))
        self.assertFalse(_should_retry_http_error(UpstreamError("non-json")))


class TestRequestJson(unittest.TestCase):

    def _ok(self, data):
        r = MagicMock()
        r.raise_for_status.return_value = None
        r.json.return_value = data
        return r

    @patch("topicrag.config.time.sleep")
    @patch("topicrag.config.requests.request")
    def test_retries_then_succeeds(self, request, sleep):
        request.side_effect = [requests.ConnectionError("reset"), self._ok({"ok": True})]
        self.assertEqual(request_json("POST", "http://x/api", {"a": 1}), {"ok": True})
        self.assertEqual(request.call_count, 2)
        sleep.assert_called_once()

    @patch("topicrag.config.time.sleep")
    @patch("topicrag.config.requests.request")
    def test_client_error_not_retried(self, request, sleep):
        bad = MagicMock()
        bad.raise_for_status.side_effect = _http_error(400)
        request.return_value = bad
        with self.assertRaises(UpstreamError):
            request_json("GET", "http://x/api")
        self.assertEqual(request.call_count, 1)
        sleep.assert_not_called()

    @patch("topicrag.config.time.sleep")
    @patch("topicrag.config.requests.request")
    def test_non_json_body(self, request, sleep):
        r = MagicMock()
        r.raise_for_status.return_value = None
        r.json.side_effect = ValueError("no json")
        r.headers = {"content-type": "text/html"}
        r.text = "<html>"
        request.return_value = r
        with self.assertRaises(UpstreamError) as ctx:
            request_json("GET", "http://x/api")
        self.assertIn("Non-JSON", str(ctx.exception))

    @patch("topicrag.config.time.sleep")
    @patch("topicrag.config.requests.request")
    def test_gives_up(self, request, sleep):
        request.side_effect = requests.Timeout("slow")
        with self.assertRaises(UpstreamError):
            request_json("GET", "http://x/api")
        self.assertEqual(request.call_count, config.HTTP_RETRY_MAX)


class TestSettings:
    def test_defaults(self):
        s = RAGSettings()
        assert (s.chunk_size, s.chunk_overlap) == (400, 50)
        assert s.max_retrieved_chunks == 8
        assert s.max_context_length == 6000
        assert s.max_history_length == 20
        assert s.cache_ttl == 2 * 86400
        assert len(s.search_templates) == 20
        assert all("{topic}" in t for t in s.search_templates)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TOPICRAG_CHUNK_SIZE", "200")
        monkeypatch.setenv("TOPICRAG_ALLOW_MODEL_KNOWLEDGE", "false")
        monkeypatch.setenv("TOPICRAG_CACHE_EXPIRY_DAYS", "1")
        monkeypatch.setenv("TOPICRAG_SEARCH_TEMPLATES", "what is {topic}? | {topic} history")
        monkeypatch.setenv("TOPICRAG_TRUSTED_SOURCES", "python.org, .gov")
        s = RAGSettings.from_env()
        assert s.chunk_size == 200
        assert s.allow_model_knowledge is False
        assert s.cache_ttl == 86400
        assert s.search_templates == ("what is {topic}?", "{topic} history")
        assert s.trusted_sources == ("python.org", ".gov")

    def test_from_env_defaults(self, monkeypatch):
        monkeypatch.delenv("TOPICRAG_SEARCH_TEMPLATES", raising=False)
        assert RAGSettings.from_env().search_templates == DEFAULT_SEARCH_TEMPLATES

    def test_frozen(self):
        with pytest.raises(Exception):
            RAGSettings().chunk_size = 1


class TestValidateConfig:
    def test_missing_brightdata(self, monkeypatch):
        monkeypatch.setattr(config, "SEARCH_PROVIDER", "brightdata")
        monkeypatch.setattr(config, "BRIGHT_DATA_CUSTOMER_ID", "")
        monkeypatch.setattr(config, "BRIGHT_DATA_ZONE", "zone")
        monkeypatch.setattr(config, "BRIGHT_DATA_PASSWORD", "")
        with pytest.raises(RuntimeError) as exc:
            config.validate_config()
        assert "BRIGHT_DATA_CUSTOMER_ID" in str(exc.value)
        assert "BRIGHT_DATA_ZONE" not in str(exc.value)

    def test_other_provider_needs_nothing(self, monkeypatch):
        monkeypatch.setattr(config, "SEARCH_PROVIDER", "custom")
        config.validate_config()


class TestEnvFile:
    def test_load_does_not_override(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("# comment\nTOPICRAG_T1=one\nTOPICRAG_T2='two'\nnot a pair\n", encoding="utf-8")
        monkeypatch.setenv("TOPICRAG_T1", "already")
        monkeypatch.delenv("TOPICRAG_T2", raising=False)
        assert load_env_file(str(env_file)) == 2
        assert os.environ["TOPICRAG_T1"] == "already"
        assert os.environ["TOPICRAG_T2"] == "two"
        monkeypatch.delenv("TOPICRAG_T2")

    def test_missing_file(self, tmp_path):
        assert load_env_file(str(tmp_path / "nope.env")) == 0
