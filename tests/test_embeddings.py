import pytest
import requests

from matching import embeddings
from matching.embeddings import EmbeddingError, HuggingFaceEmbeddingClient


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


@pytest.fixture
def posts(monkeypatch):
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append((url, headers, json))
        return FakeResponse([[1.0, 2.0], [3.0, 4.0]])

    monkeypatch.setattr(embeddings.requests, "post", fake_post)
    return calls


def test_token_vectors_are_mean_pooled_and_cached(posts):
    client = HuggingFaceEmbeddingClient(token="hf_test", model="demo/model", api_url="http://hf.test/")

    first = client.embed("fresh vegetables")
    second = client.embed("fresh vegetables")

    assert first == [2.0, 3.0]
    assert second == first
    assert len(posts) == 1
    url, headers, body = posts[0]
    assert url == "http://hf.test/demo/model"
    assert headers["Authorization"] == "Bearer hf_test"
    assert body["inputs"] == "fresh vegetables"


def test_empty_text_is_rejected(posts):
    with pytest.raises(EmbeddingError):
        HuggingFaceEmbeddingClient(token="hf_test").embed("   ")
    assert posts == []


def test_http_failures_become_embedding_errors(monkeypatch):
    monkeypatch.setattr(
        embeddings.requests, "post",
        lambda url, headers=None, json=None, timeout=None: FakeResponse({"error": "loading"}, status_code=503),
    )

    with pytest.raises(EmbeddingError):
        HuggingFaceEmbeddingClient(token="hf_test").embed("bread")


def test_non_numeric_payload(monkeypatch):
    monkeypatch.setattr(
        embeddings.requests, "post",
        lambda url, headers=None, json=None, timeout=None: FakeResponse({"error": "bad input"}),
    )

    with pytest.raises(EmbeddingError):
        HuggingFaceEmbeddingClient(token="hf_test").embed("bread")


def test_token_is_required(monkeypatch):
    monkeypatch.setattr(embeddings, "HUGGINGFACE_TOKEN", None)

    with pytest.raises(ValueError):
        HuggingFaceEmbeddingClient()
