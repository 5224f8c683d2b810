"""
Tests for the Hailuo (MiniMax) video adapter.
"""

import pytest

from conftest import FakeResponse
from providers.adapters.base import ProviderRequest
from providers.adapters.hailuo import HailuoAdapter
from providers.errors import ConfigurationError, ProviderError, ProviderTimeoutError

BASE = "https://minimax.test"
IMG_A = "data:image/png;base64,QUFBQQ=="


@pytest.fixture
def adapter():
    return HailuoAdapter(api_key="hailuo-key", base_url=BASE)


def ok(**fields):
    return FakeResponse(json_data={"base_resp": {"status_code": 0, "status_msg": "success"}, **fields})


class TestHailuoVideo:

    def test_submit_poll_retrieve_download(self, adapter, fake_session, no_sleep):
        fake_session.add("POST", "/v1/video_generation", ok(task_id="h-1"))
        fake_session.add("GET", "/v1/query/video_generation",
                         ok(status="Queueing"), ok(status="Processing"), ok(status="Success", file_id="file-9"))
        fake_session.add("GET", "/v1/files/retrieve", ok(file={"download_url": "https://files.test/v.mp4"}))
        fake_session.add("GET", "files.test/v.mp4", FakeResponse(content=b"HAILUO"))

        result = adapter.generate(ProviderRequest(kind="video", model="hailuo-2.3", prompt="run",
                                                  images=[IMG_A], last_frame=IMG_A, resolution="1080p"))

        assert result == b"HAILUO"
        body = fake_session.calls_to("/v1/video_generation", "POST")[0]["json"]
        assert body["model"] == "MiniMax-Hailuo-2.3"
        assert body["duration"] == 6
        assert body["resolution"] == "1080P"
        assert body["first_frame_image"] == IMG_A
        assert body["last_frame_image"] == IMG_A
        polls = fake_session.calls_to("/v1/query/video_generation")
        assert len(polls) == 3
        assert polls[0]["params"] == {"task_id": "h-1"}
        assert fake_session.calls_to("/v1/files/retrieve")[0]["params"] == {"file_id": "file-9"}
        assert fake_session.calls[0]["headers"]["Authorization"] == "Bearer hailuo-key"

    def test_defaults_without_frames(self, adapter, fake_session, no_sleep):
        fake_session.add("POST", "/v1/video_generation", ok(task_id="h-2"))
        fake_session.add("GET", "/v1/query/video_generation", ok(status="Success", file_id="f"))
        fake_session.add("GET", "/v1/files/retrieve", ok(file={"download_url": "https://files.test/x"}))
        fake_session.add("GET", "files.test", FakeResponse(content=b"V"))

        adapter.generate(ProviderRequest(kind="video", model="hailuo-unknown", prompt="p"))

        body = fake_session.calls_to("/v1/video_generation", "POST")[0]["json"]
        assert body["model"] == "MiniMax-Hailuo-02"
        assert body["resolution"] == "768P"
        assert "first_frame_image" not in body

    def test_failed_task(self, adapter, fake_session, no_sleep):
        fake_session.add("POST", "/v1/video_generation", ok(task_id="h-3"))
        fake_session.add("GET", "/v1/query/video_generation", ok(status="Fail", error_message="content rejected"))

        with pytest.raises(ProviderError, match="content rejected"):
            adapter.generate(ProviderRequest(kind="video", prompt="p"))

    def test_base_resp_error_on_submit(self, adapter, fake_session):
        fake_session.add("POST", "/v1/video_generation", FakeResponse(
            json_data={"base_resp": {"status_code": 1004, "status_msg": "authentication failed"}}))

        with pytest.raises(ProviderError, match="authentication failed"):
            adapter.generate(ProviderRequest(kind="video", prompt="p"))

    def test_poll_timeout(self, adapter, fake_session, no_sleep):
        fake_session.add("POST", "/v1/video_generation", ok(task_id="h-4"))
        fake_session.add("GET", "/v1/query/video_generation", ok(status="Processing"))

        with pytest.raises(ProviderTimeoutError, match="600s"):
            adapter.generate(ProviderRequest(kind="video", prompt="p"))

    def test_image_generation_not_supported(self, adapter):
        with pytest.raises(ProviderError, match="not supported"):
            adapter.generate(ProviderRequest(kind="image", prompt="p"))

    def test_missing_key(self, fake_session):
        with pytest.raises(ConfigurationError, match="HAILUO_API_KEY"):
            HailuoAdapter(api_key=None).generate(ProviderRequest(kind="video", prompt="p"))
        assert fake_session.calls == []
