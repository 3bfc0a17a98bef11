from decimal import Decimal

import cloudinary.exceptions
import cloudinary.uploader
import pytest

from styletransform.config import Settings
from styletransform.runtime.models import GenerationResult
from styletransform.storage.cloudinary import (
    INPUT_TRANSFORMATION,
    RESULT_TRANSFORMATION,
    CloudinaryError,
    CloudinaryUploader,
)

SECURE = "https://res.cloudinary.com/demo/image/upload/v1/styletransform/u1_gen1.png"


class FakeUpload:
    """Stands in for cloudinary.uploader.upload; records (source, options)."""

    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    def __call__(self, source, **options):
        self.calls.append((source, options))
        if isinstance(self.reply, BaseException):
            raise self.reply
        return self.reply


@pytest.fixture
def fake_upload(monkeypatch):
    def install(reply):
        fake = FakeUpload(reply)
        monkeypatch.setattr(cloudinary.uploader, "upload", fake)
        return fake

    return install


def _uploader(**kwargs):
    return CloudinaryUploader("demo", "key123", "s3cr3t", **kwargs)


def _result():
    return GenerationResult(
        id="gen1",
        image_url="https://image.pollinations.example/prompt/x?seed=1",
        thumbnail_url="https://image.pollinations.example/prompt/x?seed=1",
        method="pollinations",
        cost=Decimal("0"),
        meta={"provider": "pollinations"},
    )


def test_requires_credentials():
    with pytest.raises(CloudinaryError):
        CloudinaryUploader("demo", "", "secret")
    with pytest.raises(CloudinaryError):
        CloudinaryUploader.from_settings(Settings(CLOUDINARY_CLOUD_NAME="", CLOUDINARY_API_KEY="k"))


def test_stage_uploads_through_sdk_with_per_call_credentials(fake_upload):
    fake = fake_upload({"secure_url": SECURE, "public_id": "inputs/in1"})
    url = _uploader(timeout=12).stage("data:image/png;base64,AAAA", public_id="in1")

    assert url == SECURE
    source, options = fake.calls[0]
    assert source == "data:image/png;base64,AAAA"
    assert options["cloud_name"] == "demo"
    assert options["api_key"] == "key123"
    assert options["api_secret"] == "s3cr3t"
    assert options["folder"] == "styletransform/inputs"
    assert options["public_id"] == "in1"
    assert options["transformation"] == INPUT_TRANSFORMATION
    assert options["resource_type"] == "image"
    assert options["timeout"] == 12


def test_stage_omits_public_id_when_not_given(fake_upload):
    fake = fake_upload({"secure_url": SECURE})
    _uploader().stage("https://example.com/a.png")
    assert "public_id" not in fake.calls[0][1]


def test_stage_without_secure_url_raises(fake_upload):
    fake_upload({"public_id": "x"})
    with pytest.raises(CloudinaryError):
        _uploader().stage("https://example.com/a.png")


def test_sdk_error_is_wrapped(fake_upload):
    fake_upload(cloudinary.exceptions.Error("Invalid Signature"))
    with pytest.raises(CloudinaryError, match="Invalid Signature"):
        _uploader().stage("https://example.com/a.png")


def test_rehost_replaces_url_and_thumbnail(fake_upload):
    fake = fake_upload({"secure_url": SECURE, "public_id": "styletransform/u1_gen1"})
    original = _result()
    out = _uploader().rehost(original, public_id="u1_gen1")

    assert out.image_url == SECURE
    assert out.thumbnail_url == SECURE.replace("/upload/", "/upload/w_300,h_300,c_fill/")
    assert out.meta["direct_url"] == original.image_url
    assert out.meta["cdn_public_id"] == "styletransform/u1_gen1"
    assert out.method == "pollinations"
    assert original.image_url != SECURE
    source, options = fake.calls[0]
    assert source == original.image_url
    assert options["folder"] == "styletransform"
    assert options["transformation"] == RESULT_TRANSFORMATION


@pytest.mark.parametrize(
    "reply",
    [cloudinary.exceptions.Error("Server returned unexpected status code - 500"), {}, None],
)
def test_rehost_failure_keeps_original(fake_upload, reply):
    fake_upload(reply)
    original = _result()
    assert _uploader().rehost(original) is original
