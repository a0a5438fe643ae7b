from types import SimpleNamespace

import pytest
import requests
from redis.exceptions import ConnectionError as RedisConnectionError

from gellobit.utils import storage
from gellobit.utils.notifications import NOTIFICATIONS_JOB, NotificationSink, get_notification_sink


class FakeQueue:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.jobs = []

    def enqueue(self, func, *args, **kwargs):
        if self.fail:
            raise RedisConnectionError("redis down")
        self.jobs.append((func, args))


def test_notification_sink_enqueues_and_swallows_redis_errors() -> None:
    queue = FakeQueue()
    NotificationSink(queue)({"id": 1, "entity_type": "opportunity"})
    assert queue.jobs == [(NOTIFICATIONS_JOB, ({"id": 1, "entity_type": "opportunity"},))]

    NotificationSink(FakeQueue(fail=True))({"id": 2})


def test_notifications_can_be_disabled(monkeypatch) -> None:
    monkeypatch.setenv("NOTIFICATIONS_ENABLED", "false")
    assert get_notification_sink() is None


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(str(self.status_code))


def test_blob_store_upload_and_remove(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(storage.requests, "put",
                        lambda url, data=None, headers=None, timeout=None: calls.append(("PUT", url, headers)) or FakeResponse())
    monkeypatch.setattr(storage.requests, "delete",
                        lambda url, headers=None, timeout=None: calls.append(("DELETE", url, headers)) or FakeResponse(404))

    store = storage.BlobStore("https://storage.example.com/v1/", "images", token="t0k")
    url = store.upload("opportunities/a.png", b"\x89PNG", "image/png")
    store.remove("opportunities/a.png")

    assert url == "https://storage.example.com/v1/object/public/images/opportunities/a.png"
    assert calls[0][1] == "https://storage.example.com/v1/object/images/opportunities/a.png"
    assert calls[0][2]["Authorization"] == "Bearer t0k"
    assert calls[1][0] == "DELETE"


def test_blob_store_from_environment(monkeypatch) -> None:
    assert storage.get_blob_store() is None
    monkeypatch.setenv("STORAGE_URL", "https://storage.example.com")
    store = storage.get_blob_store()
    assert store.bucket == "images"


def test_storage_path_keeps_extension() -> None:
    assert storage.storage_path_for("https://img.example.com/a/photo.JPG?w=200", "image/jpeg").endswith(".jpg")
    assert storage.storage_path_for("https://img.example.com/render", "image/png").endswith(".png")


class FakeImageResponse:
    def __init__(self, content_type):
        self.headers = {"Content-Type": content_type}
        self.raw = SimpleNamespace(read=lambda size, decode_content=True: b"\x89PNG")
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True

    def raise_for_status(self):
        pass


def test_download_image_closes_the_response(monkeypatch) -> None:
    responses = {"https://img.example.com/a.png": FakeImageResponse("image/png"),
                 "https://img.example.com/page": FakeImageResponse("text/html")}
    monkeypatch.setattr(storage.requests, "get", lambda url, timeout=None, stream=False: responses[url])

    assert storage.download_image("https://img.example.com/a.png") == (b"\x89PNG", "image/png")
    with pytest.raises(ValueError):
        storage.download_image("https://img.example.com/page")
    assert all(r.closed for r in responses.values())
