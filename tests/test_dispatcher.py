"""
GenerationDispatcher with a stub adapter: persistence, sidecar and Asset rows.
"""

import base64

import pytest

from backend.core.dispatcher import GenerationDispatcher
from backend.models.asset import Asset
from backend.models.schemas import GenerateImageRequest, GenerateVideoRequest
from conftest import make_png
from providers.adapters.base import BaseAdapter
from providers.adapters.factory import Provider
from providers.errors import ConfigurationError, ProviderError


class StubAdapter(BaseAdapter):
    provider_name = "Stub"

    def __init__(self, output=b"", error=None):
        super().__init__()
        self.output = output
        self.error = error
        self.requests = []

    def generate(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.output

    def generate_image(self, request):
        return self.output


class StubDispatcher(GenerationDispatcher):
    def __init__(self, library, adapter):
        super().__init__(library, credentials={})
        self.adapter = adapter
        self.providers = []

    def get_adapter(self, provider):
        self.providers.append(provider)
        return self.adapter


def data_uri(raw, mime="image/png"):
    return f"data:{mime};base64,{base64.b64encode(raw).decode()}"


class TestImageDispatch:

    @pytest.mark.asyncio
    async def test_persists_file_sidecar_and_asset(self, library, db_session):
        png = make_png(16, 9)
        adapter = StubAdapter(output=png)
        dispatcher = StubDispatcher(library, adapter)
        library.persist(make_png(), "images", "upstream", "png")

        req = GenerateImageRequest(nodeId="node-img-1", prompt="a red fox", imageModel="kling-v2-1",
                                   aspectRatio="16:9", resolution="2K",
                                   imageBase64=["/library/images/upstream.png", data_uri(b"inline")])
        url = await dispatcher.generate_image(req, db_session)

        assert url == "/library/images/node-img-1.png"
        assert dispatcher.providers == [Provider.KLING]
        sent = adapter.requests[0]
        assert sent.kind == "image"
        assert sent.model == "kling-v2-1"
        assert sent.aspect_ratio == "16:9"
        assert sent.resolution == "2K"
        assert len(sent.images) == 2
        assert all(image.startswith("data:") for image in sent.images)
        assert library.resolve_to_bytes(url) == png

        kind, metadata = library.find_result("node-img-1")
        assert kind == "images"
        assert metadata.model == "kling-v2-1"
        assert metadata.prompt == "a red fox"

        asset = db_session.query(Asset).filter(Asset.id == "node-img-1").first()
        assert asset.width == 16
        assert asset.height == 9
        assert asset.format == "png"
        assert asset.source_urls == ["/library/images/upstream.png"]

    @pytest.mark.asyncio
    async def test_regenerating_same_node_overwrites(self, library, db_session):
        dispatcher = StubDispatcher(library, StubAdapter(output=make_png(4, 4)))
        req = GenerateImageRequest(nodeId="node-again", prompt="first")
        await dispatcher.generate_image(req, db_session)

        dispatcher.adapter.output = make_png(5, 5)
        await dispatcher.generate_image(GenerateImageRequest(nodeId="node-again", prompt="second"), db_session)

        assets = db_session.query(Asset).filter(Asset.id == "node-again").all()
        assert len(assets) == 1
        assert assets[0].prompt == "second"
        assert assets[0].width == 5
        assert library.find_result("node-again")[1].model == "gemini-pro"

    @pytest.mark.asyncio
    async def test_unresolvable_refs_are_dropped(self, library, db_session):
        adapter = StubAdapter(output=make_png())
        dispatcher = StubDispatcher(library, adapter)

        await dispatcher.generate_image(GenerateImageRequest(
            nodeId="node-drop", prompt="p", imageBase64=["/library/images/gone.png", "https://elsewhere.test/x.png"]),
            db_session)

        assert adapter.requests[0].images == []

    @pytest.mark.asyncio
    async def test_missing_node_id_gets_random_id(self, library, db_session):
        dispatcher = StubDispatcher(library, StubAdapter(output=make_png()))
        url = await dispatcher.generate_image(GenerateImageRequest(prompt="p"), db_session)
        assert url.startswith("/library/images/img_")

    @pytest.mark.asyncio
    async def test_provider_error_propagates_and_nothing_is_written(self, library, db_session):
        dispatcher = StubDispatcher(library, StubAdapter(error=ProviderError("quota exceeded")))

        with pytest.raises(ProviderError, match="quota exceeded"):
            await dispatcher.generate_image(GenerateImageRequest(nodeId="node-fail", prompt="p"), db_session)

        assert library.find_result("node-fail") is None

    @pytest.mark.asyncio
    async def test_invalid_image_bytes_raise(self, library, db_session):
        dispatcher = StubDispatcher(library, StubAdapter(output=b"garbage"))
        with pytest.raises(ValueError, match="Invalid image data"):
            await dispatcher.generate_image(GenerateImageRequest(nodeId="node-bad", prompt="p"), db_session)

    @pytest.mark.asyncio
    async def test_missing_credentials_raise_configuration_error(self, library, db_session):
        dispatcher = GenerationDispatcher(library, credentials={})
        with pytest.raises(ConfigurationError, match="GEMINI_API_KEY"):
            await dispatcher.generate_image(GenerateImageRequest(nodeId="node-nokey", prompt="p"), db_session)


class TestVideoDispatch:

    @pytest.mark.asyncio
    async def test_start_and_last_frame(self, library, db_session):
        adapter = StubAdapter(output=b"MP4BYTES")
        dispatcher = StubDispatcher(library, adapter)
        library.persist(make_png(), "images", "start", "png")
        library.persist(make_png(), "images", "tail", "png")

        req = GenerateVideoRequest(nodeId="node-vid-1", prompt="dolly in", videoModel="hailuo-02",
                                   imageBase64=["/library/images/start.png", "/library/images/ignored.png"],
                                   lastFrameBase64="/library/images/tail.png", duration=6)
        url = await dispatcher.generate_video(req, db_session)

        assert url == "/library/videos/node-vid-1.mp4"
        assert dispatcher.providers == [Provider.HAILUO]
        sent = adapter.requests[0]
        assert sent.kind == "video"
        assert len(sent.images) == 1
        assert sent.last_frame.startswith("data:image/png;base64,")
        assert sent.duration == 6

        kind, metadata = library.find_result("node-vid-1")
        assert kind == "videos"
        assert metadata.aspect_ratio == "Auto"
        assert metadata.resolution == "Auto"
        asset = db_session.query(Asset).filter(Asset.id == "node-vid-1").first()
        assert asset.source_urls == ["/library/images/start.png", "/library/images/tail.png"]
        assert asset.format == "mp4"

    @pytest.mark.asyncio
    async def test_text_only_video_uses_default_model_label(self, library, db_session):
        adapter = StubAdapter(output=b"MP4")
        dispatcher = StubDispatcher(library, adapter)

        await dispatcher.generate_video(GenerateVideoRequest(nodeId="node-vid-2", prompt="p",
                                                             aspectRatio="9:16"), db_session)

        assert dispatcher.providers == [Provider.GEMINI]
        assert adapter.requests[0].images == []
        assert adapter.requests[0].last_frame is None
        metadata = library.find_result("node-vid-2")[1]
        assert metadata.model == "veo-3.1"
        assert metadata.aspect_ratio == "9:16"

    @pytest.mark.asyncio
    async def test_motion_reference_is_rejected(self, library, db_session):
        adapter = StubAdapter(output=b"MP4")
        dispatcher = StubDispatcher(library, adapter)

        req = GenerateVideoRequest(nodeId="node-vid-3", prompt="dance", videoModel="kling-v2-6",
                                   motionReferenceUrl="/library/videos/ref.mp4")
        with pytest.raises(ValueError, match="motionReferenceUrl"):
            await dispatcher.generate_video(req, db_session)

        assert adapter.requests == []
        assert library.find_result("node-vid-3") is None


class TestRegeneration:

    @pytest.mark.asyncio
    async def test_previous_result_cleared_while_running(self, library, db_session):
        adapter = StubAdapter(output=make_png())
        dispatcher = StubDispatcher(library, adapter)
        req = GenerateImageRequest(nodeId="node-regen", prompt="p")
        await dispatcher.generate_image(req, db_session)
        assert library.find_result("node-regen") is not None

        seen = []

        def generate_while_checking(request):
            seen.append(library.find_result("node-regen"))
            raise ProviderError("Gemini API error: quota exceeded")

        adapter.generate = generate_while_checking
        with pytest.raises(ProviderError):
            await dispatcher.generate_image(req, db_session)

        # 新任务运行期间和失败之后，旧结果都不能被当成本次完成
        assert seen == [None]
        assert library.find_result("node-regen") is None
        assert db_session.query(Asset).filter(Asset.id == "node-regen").first() is None

    @pytest.mark.asyncio
    async def test_regenerated_video_replaces_result(self, library, db_session):
        adapter = StubAdapter(output=b"FIRST")
        dispatcher = StubDispatcher(library, adapter)
        req = GenerateVideoRequest(nodeId="node-regen-vid", prompt="p")
        await dispatcher.generate_video(req, db_session)

        adapter.output = b"SECOND"
        url = await dispatcher.generate_video(req, db_session)

        assert url == "/library/videos/node-regen-vid.mp4"
        assert library.find_result("node-regen-vid")[0] == "videos"
        assert db_session.query(Asset).filter(Asset.id == "node-regen-vid").count() == 1
        with open(library.file_path_for("videos", "node-regen-vid.mp4"), "rb") as f:
            assert f.read() == b"SECOND"
