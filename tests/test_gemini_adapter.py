"""
Tests for the Gemini / Veo adapter using a fake google-genai client.
"""

from types import SimpleNamespace

import pytest
from google.genai import errors as genai_errors

from conftest import FakeResponse
from providers.adapters.base import ProviderRequest
from providers.adapters.gemini import GeminiAdapter, map_image_ratio, map_video_model
from providers.errors import ConfigurationError, ProviderError, ProviderTimeoutError

IMG_A = "data:image/png;base64,QUFBQQ=="


def image_response(data=b"GEMINI"):
    part_text = SimpleNamespace(inline_data=None, text="here you go")
    part_image = SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type="image/png"))
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[part_text, part_image]))
    return SimpleNamespace(candidates=[candidate])


def video_operation(done, uri=None, error=None):
    response = None
    if uri:
        response = SimpleNamespace(generated_videos=[SimpleNamespace(video=SimpleNamespace(uri=uri))])
    return SimpleNamespace(done=done, error=error, response=response, name="operations/veo-1")


class FakeModels:
    def __init__(self, owner):
        self.owner = owner

    def generate_content(self, **kwargs):
        self.owner.calls.append(("generate_content", kwargs))
        if self.owner.error:
            raise self.owner.error
        return self.owner.content_response

    def generate_videos(self, **kwargs):
        self.owner.calls.append(("generate_videos", kwargs))
        return self.owner.operations_queue.pop(0)


class FakeOperations:
    def __init__(self, owner):
        self.owner = owner

    def get(self, operation):
        self.owner.calls.append(("operations.get", operation.name))
        return self.owner.operations_queue.pop(0)


class FakeGenaiClient:
    def __init__(self):
        self.calls = []
        self.api_keys = []
        self.error = None
        self.content_response = image_response()
        self.operations_queue = []
        self.models = FakeModels(self)
        self.operations = FakeOperations(self)

    def factory(self, api_key=None):
        self.api_keys.append(api_key)
        return self


@pytest.fixture
def fake_client():
    return FakeGenaiClient()


@pytest.fixture
def adapter(fake_client):
    return GeminiAdapter(api_key="gemini-key", client_factory=fake_client.factory)


class TestGeminiMapping:

    @pytest.mark.parametrize("ratio,expected", [
        ("Auto", "1:1"), ("3:2", "4:3"), ("2:3", "3:4"), ("5:4", "4:3"),
        ("4:5", "3:4"), ("21:9", "16:9"), ("16:9", "16:9"),
    ])
    def test_image_ratio(self, ratio, expected):
        assert map_image_ratio(ratio) == expected

    def test_video_model_names(self):
        assert map_video_model("veo-3.1") == "veo-3.1-generate-preview"
        assert map_video_model("veo-3.1-fast") == "veo-3.1-fast-generate-preview"
        assert map_video_model(None) == "veo-3.1-fast-generate-preview"


class TestGeminiImage:

    def test_returns_first_inline_image(self, adapter, fake_client):
        result = adapter.generate(ProviderRequest(kind="image", prompt="a lighthouse", images=[IMG_A],
                                                  aspect_ratio="21:9", resolution="4K"))

        assert result == b"GEMINI"
        assert fake_client.api_keys == ["gemini-key"]
        name, kwargs = fake_client.calls[0]
        assert name == "generate_content"
        assert kwargs["model"] == "gemini-3-pro-image-preview"
        assert kwargs["contents"][0] == "a lighthouse"
        assert len(kwargs["contents"]) == 2
        image_config = kwargs["config"].image_config
        assert image_config.aspect_ratio == "16:9"
        assert image_config.image_size == "4K"

    def test_unknown_resolution_falls_back_to_1k(self, adapter, fake_client):
        adapter.generate(ProviderRequest(kind="image", prompt="p", resolution="Auto"))
        assert fake_client.calls[0][1]["config"].image_config.image_size == "1K"

    def test_response_without_image_raises(self, adapter, fake_client):
        fake_client.content_response = SimpleNamespace(candidates=[])
        with pytest.raises(ProviderError, match="No image data"):
            adapter.generate(ProviderRequest(kind="image", prompt="p"))

    def test_sdk_error_is_wrapped_with_status(self, adapter, fake_client):
        fake_client.error = genai_errors.APIError(
            403, {"error": {"code": 403, "message": "The caller does not have permission", "status": "PERMISSION_DENIED"}})
        with pytest.raises(ProviderError) as exc_info:
            adapter.generate(ProviderRequest(kind="image", prompt="p"))
        assert exc_info.value.status_code == 403

    def test_missing_key(self, fake_client):
        adapter = GeminiAdapter(api_key="", client_factory=fake_client.factory)
        with pytest.raises(ConfigurationError, match="GEMINI_API_KEY"):
            adapter.generate(ProviderRequest(kind="image", prompt="p"))
        assert fake_client.calls == []


class TestVeoVideo:

    def test_polls_operation_then_downloads_with_key(self, adapter, fake_client, fake_session, no_sleep):
        fake_client.operations_queue = [
            video_operation(False),
            video_operation(False),
            video_operation(True, uri="https://veo.test/files/v1:download?alt=media"),
        ]
        fake_session.add("GET", "veo.test/files", FakeResponse(content=b"VEO"))

        result = adapter.generate(ProviderRequest(kind="video", model="veo-3.1", prompt="sunrise",
                                                  images=[IMG_A], last_frame=IMG_A,
                                                  aspect_ratio="9:16", resolution="1080p"))

        assert result == b"VEO"
        name, kwargs = fake_client.calls[0]
        assert name == "generate_videos"
        assert kwargs["model"] == "veo-3.1-generate-preview"
        assert kwargs["config"].aspect_ratio == "9:16"
        assert kwargs["config"].resolution == "1080p"
        assert kwargs["config"].duration_seconds == 8
        assert kwargs["config"].last_frame is not None
        assert kwargs["image"].image_bytes == b"AAAA"
        assert [c[0] for c in fake_client.calls].count("operations.get") == 2
        assert fake_session.calls[0]["url"] == "https://veo.test/files/v1:download?alt=media&key=gemini-key"

    def test_defaults_to_landscape_720p(self, adapter, fake_client, fake_session, no_sleep):
        fake_client.operations_queue = [video_operation(True, uri="https://veo.test/files/v2")]
        fake_session.add("GET", "veo.test", FakeResponse(content=b"V"))

        adapter.generate(ProviderRequest(kind="video", prompt="p", duration=4))

        config = fake_client.calls[0][1]["config"]
        assert config.aspect_ratio == "16:9"
        assert config.resolution == "720p"
        assert config.duration_seconds == 4
        assert "image" not in fake_client.calls[0][1]
        assert fake_session.calls[0]["url"] == "https://veo.test/files/v2?key=gemini-key"

    def test_operation_error(self, adapter, fake_client, no_sleep):
        fake_client.operations_queue = [video_operation(True, error={"message": "safety filter"})]
        with pytest.raises(ProviderError, match="safety filter"):
            adapter.generate(ProviderRequest(kind="video", prompt="p"))

    def test_operation_timeout(self, adapter, fake_client, no_sleep):
        fake_client.operations_queue = [video_operation(False) for _ in range(200)]
        with pytest.raises(ProviderTimeoutError, match="600s"):
            adapter.generate(ProviderRequest(kind="video", prompt="p"))
