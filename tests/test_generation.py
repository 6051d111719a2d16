"""OpenAI-backed generation service, client selection, reference image cache, key store."""
import base64
from types import SimpleNamespace

import httpx
import pytest

from docauto.errors import GenerationError, MissingCredentialError
from docauto.generation import (
    OpenAIGenerationService,
    ReferenceImage,
    ReferenceImageCache,
    build_client,
    fetch_reference_image,
)
from docauto.key_store import API_KEY_NAME, EnvKeyStore

from tests.conftest import PNG_BYTES


class FakeCompletions:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return self.response


class FakeImages:
    def __init__(self, b64=None):
        self.b64 = b64
        self.generated = []
        self.edited = []

    def _response(self):
        return SimpleNamespace(data=[SimpleNamespace(b64_json=self.b64)])

    def generate(self, **kwargs):
        self.generated.append(kwargs)
        return self._response()

    def edit(self, **kwargs):
        self.edited.append(kwargs)
        return self._response()


def _client(content="hello", choices=True, b64=None):
    message = SimpleNamespace(content=content)
    response = SimpleNamespace(choices=[SimpleNamespace(message=message)] if choices else [])
    return SimpleNamespace(
        chat=SimpleNamespace(completions=FakeCompletions(response)),
        images=FakeImages(b64),
    )


def test_generate_text(isolated_env):
    client = _client("  some answer ")
    service = OpenAIGenerationService(client, text_model="m")
    assert service.generate_text("prompt", temperature=0.1, max_tokens=10) == "some answer"
    call = client.chat.completions.calls[0]
    assert call["model"] == "m"
    assert call["messages"] == [{"role": "user", "content": "prompt"}]
    assert (call["temperature"], call["max_tokens"]) == (0.1, 10)


@pytest.mark.parametrize("client", [_client(choices=False), _client(content="")])
def test_empty_text_response_is_an_error(isolated_env, client):
    with pytest.raises(GenerationError):
        OpenAIGenerationService(client).generate_text("prompt")


def test_generate_image_without_references(isolated_env):
    client = _client(b64=base64.b64encode(PNG_BYTES).decode("ascii"))
    image = OpenAIGenerationService(client, image_size="1024x1024").generate_image("draw", [])
    assert image.data == PNG_BYTES
    assert client.images.generated[0]["size"] == "1024x1024"
    assert client.images.edited == []


def test_generate_image_with_references_uses_edit(isolated_env):
    client = _client(b64=base64.b64encode(PNG_BYTES).decode("ascii"))
    refs = [ReferenceImage(PNG_BYTES, "image/png"), ReferenceImage(b"jpg", "image/jpeg")]
    OpenAIGenerationService(client).generate_image("draw", refs)
    files = client.images.edited[0]["image"]
    assert files == [("reference.png", PNG_BYTES, "image/png"), ("reference.jpg", b"jpg", "image/jpeg")]


def test_no_image_returned(isolated_env):
    assert OpenAIGenerationService(_client(b64=None)).generate_image("draw", []) is None


def test_build_client_requires_a_key(isolated_env):
    with pytest.raises(MissingCredentialError):
        build_client(None)


def test_build_client_prefers_azure(isolated_env, monkeypatch):
    monkeypatch.setenv("AZURE_OPENAI_API_KEY", "az-key")
    monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://example.openai.azure.com/")
    from openai import AzureOpenAI

    assert isinstance(build_client(None), AzureOpenAI)


def test_reference_cache_fetches_once():
    fetched = []

    def fetch(source):
        fetched.append(source)
        return ReferenceImage(source.encode())

    cache = ReferenceImageCache(["a.png", "b.png"], fetch=fetch)
    assert [r.data for r in cache.images()] == [b"a.png", b"b.png"]
    assert [r.data for r in cache.images()] == [b"a.png", b"b.png"]
    assert fetched == ["a.png", "b.png"]
    assert (cache.hits, cache.misses) == (2, 2)


def test_reference_cache_skips_unloadable_sources(tmp_path):
    path = tmp_path / "style.png"
    path.write_bytes(PNG_BYTES)
    cache = ReferenceImageCache([str(tmp_path / "missing.png"), str(path)])
    images = cache.images()
    assert len(images) == 1 and images[0].data == PNG_BYTES


def test_fetch_reference_image_over_http(monkeypatch):
    def fake_get(url, timeout, follow_redirects):
        return httpx.Response(200, content=b"jpeg-bytes", headers={"content-type": "image/jpeg; charset=binary"}, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx, "get", fake_get)
    image = fetch_reference_image("https://example.com/style.jpg")
    assert image.data == b"jpeg-bytes"
    assert image.content_type == "image/jpeg"


def test_key_store_round_trip(isolated_env, monkeypatch):
    store = EnvKeyStore(isolated_env)
    assert store.get() is None
    store.set(API_KEY_NAME, "sk-test")
    monkeypatch.setenv(API_KEY_NAME, "")
    assert EnvKeyStore(isolated_env).get() == "sk-test"
