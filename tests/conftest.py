"""
Shared fixtures.

The backend reads its data directory at import time, so the environment is
prepared here before any test module imports `backend`.
"""

import io
import json
import os
import tempfile
from types import SimpleNamespace

import pytest
from PIL import Image

_DATA_DIR = tempfile.mkdtemp(prefix="framechain-test-")
os.environ["FRAMECHAIN_DATA_DIR"] = _DATA_DIR
os.environ.pop("DATABASE_URL", None)
os.environ.pop("LIBRARY_DIR", None)
for _key in ("GEMINI_API_KEY", "KLING_ACCESS_KEY", "KLING_SECRET_KEY", "HAILUO_API_KEY", "OPENAI_API_KEY"):
    # 空字符串阻止 .env 注入真实 Key
    os.environ[_key] = ""


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b"", text=None):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        if text is not None:
            self.text = text
        elif json_data is not None:
            self.text = json.dumps(json_data)
        else:
            self.text = content.decode("utf-8", errors="replace")

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeSession:
    """
    Minimal stand-in for requests.Session.

    Routes are (method, url-substring) -> list of responses; each call pops the
    next response, the last one repeats.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, url_part, *responses):
        self.routes.setdefault((method.upper(), url_part), []).extend(responses)

    def _dispatch(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        for (route_method, url_part), responses in self.routes.items():
            if route_method == method and url_part in url:
                if len(responses) > 1:
                    return responses.pop(0)
                return responses[0]
        raise AssertionError(f"Unexpected request: {method} {url}")

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, **kwargs)

    def delete(self, url, **kwargs):
        return self._dispatch("DELETE", url, **kwargs)

    def calls_to(self, url_part, method=None):
        return [c for c in self.calls if url_part in c["url"] and (method is None or c["method"] == method)]


def make_png(width=8, height=6, color=(200, 30, 30)):
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def fake_session(monkeypatch):
    """Patch the shared provider HTTP session everywhere it is imported."""
    session = FakeSession()
    import providers.utils
    import providers.adapters.hailuo
    import providers.adapters.kling
    import providers.adapters.openai

    for module in (providers.utils, providers.adapters.kling, providers.adapters.hailuo, providers.adapters.openai):
        monkeypatch.setattr(module, "api_session", session)
    return session


@pytest.fixture
def no_sleep(monkeypatch):
    """Make poll loops run instantly while keeping a controllable clock."""
    clock = {"now": 1_700_000_000.0}

    def fake_time():
        return clock["now"]

    def fake_sleep(seconds):
        clock["now"] += seconds

    fake_module = SimpleNamespace(time=fake_time, sleep=fake_sleep)
    import providers.adapters.gemini
    import providers.utils

    monkeypatch.setattr(providers.utils, "time", fake_module)
    monkeypatch.setattr(providers.adapters.gemini, "time", fake_module)
    return clock


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def library(tmp_path):
    from backend.core.media_library import MediaLibrary
    return MediaLibrary(str(tmp_path / "library"))


@pytest.fixture
def db_session():
    from backend.db import SessionLocal, init_db
    init_db()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
