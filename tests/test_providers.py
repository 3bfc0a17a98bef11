from urllib.parse import parse_qs, unquote, urlsplit

import pytest
import requests

from fakes import DummyResp, DummySession, png_bytes
from styletransform.providers import (
    KontextProvider,
    MockPlaceholder,
    PollinationsProvider,
    ProdiaProvider,
    ReplicateProvider,
    registry,
)
from styletransform.providers.image_base import ErrorKind, ProviderConfig, ProviderError, kind_for_status
from styletransform.runtime.models import GenerationMode, GenerationRequest, GenerationSettings
from styletransform.runtime.styles import QUALITY_SUFFIX, enhance_prompt


def _t2i(prompt="a red bicycle", **settings):
    return GenerationRequest(prompt=prompt, settings=GenerationSettings(**settings))


def _i2i(ref="https://example.com/in.png", **settings):
    return GenerationRequest(
        prompt="make it blue",
        mode=GenerationMode.IMAGE_TO_IMAGE,
        input_image_ref=ref,
        settings=GenerationSettings(**settings),
    )


def _query(url):
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


@pytest.mark.parametrize(
    "status,kind",
    [
        (401, ErrorKind.AUTH),
        (403, ErrorKind.AUTH),
        (429, ErrorKind.RATE_LIMITED),
        (500, ErrorKind.UNAVAILABLE),
        (503, ErrorKind.UNAVAILABLE),
        (400, ErrorKind.UPSTREAM_FAILED),
        (404, ErrorKind.UPSTREAM_FAILED),
    ],
)
def test_status_mapping(status, kind):
    assert kind_for_status(status) is kind


def test_registry_knows_every_tier():
    assert registry.available() == ["kontext", "pollinations", "prodia", "replicate"]
    with pytest.raises(ValueError):
        registry.create("dalle", ProviderConfig(base_url="http://x"))


# ---------- pollinations ----------

def _pollinations(session, **extra):
    cfg = ProviderConfig(base_url="https://image.example/prompt/", model="flux", extra=extra)
    return PollinationsProvider(cfg, session=session)


def test_pollinations_composes_direct_url():
    session = DummySession(get=[DummyResp(200)])
    raw = _pollinations(session).generate(_t2i(seed=42))

    method, url, kwargs = session.calls[0]
    assert method == "GET"
    assert raw.provider == "pollinations"
    assert raw.payload["image_url"] == url
    assert url.startswith("https://image.example/prompt/")
    path_prompt = unquote(urlsplit(url).path.rsplit("/", 1)[-1])
    assert path_prompt == enhance_prompt("a red bicycle")
    assert _query(url) == {
        "width": "512",
        "height": "512",
        "model": "flux",
        "enhance": "true",
        "nologo": "true",
        "seed": "42",
    }
    assert kwargs["headers"]["User-Agent"]
    assert raw.meta["truncated"] is False


def test_pollinations_random_seed_when_unset():
    session = DummySession(get=[DummyResp(200)])
    raw = _pollinations(session).generate(_t2i())
    assert 0 <= raw.payload["seed"] <= 999_999
    assert _query(raw.payload["image_url"])["seed"] == str(raw.payload["seed"])


def test_pollinations_truncates_prompt_at_word_boundary():
    session = DummySession(get=[DummyResp(200)])
    prompt = " ".join(f"word{i}" for i in range(400))
    raw = _pollinations(session, max_url_length=400).generate(_t2i(prompt, seed=1))

    url = raw.payload["image_url"]
    assert len(url) <= 400
    assert raw.meta["truncated"] is True
    sent = raw.payload["prompt"]
    assert enhance_prompt(prompt).startswith(sent)
    assert not sent.endswith(" ")
    assert len(session.calls) == 1


def test_pollinations_unsupported_when_one_word_does_not_fit():
    session = DummySession(get=[DummyResp(200)])
    with pytest.raises(ProviderError) as e:
        _pollinations(session, max_url_length=40).generate(_t2i(seed=1))
    assert e.value.kind is ErrorKind.UNSUPPORTED
    assert session.calls == []


@pytest.mark.parametrize(
    "reply,kind",
    [
        (DummyResp(429), ErrorKind.RATE_LIMITED),
        (DummyResp(502), ErrorKind.UNAVAILABLE),
        (DummyResp(401), ErrorKind.AUTH),
        (requests.ConnectionError("reset"), ErrorKind.UNAVAILABLE),
        (requests.Timeout("slow"), ErrorKind.UNAVAILABLE),
    ],
)
def test_pollinations_errors_are_typed(reply, kind):
    session = DummySession(get=[reply])
    with pytest.raises(ProviderError) as e:
        _pollinations(session).generate(_t2i())
    assert e.value.kind is kind
    assert e.value.provider == "pollinations"


def test_pollinations_inline_returns_data_uri():
    resp = DummyResp(200, content=png_bytes())
    raw = _pollinations(DummySession(get=[resp]), inline=True).generate(_t2i())
    assert raw.payload["data_uri"].startswith("data:image/png;base64,")
    assert resp.closed


def test_pollinations_inline_rejects_non_image():
    session = DummySession(get=[DummyResp(200, content=b"<html>busy</html>")])
    with pytest.raises(ProviderError) as e:
        _pollinations(session, inline=True).generate(_t2i())
    assert e.value.kind is ErrorKind.UPSTREAM_FAILED


# ---------- kontext ----------

class RecordingStager:
    def __init__(self, url="https://res.cloudinary.com/demo/image/upload/v1/in.png", error=None):
        self.url = url
        self.error = error
        self.staged = []

    def stage(self, image_ref, *, public_id=None):
        self.staged.append((image_ref, public_id))
        if self.error:
            raise self.error
        return self.url


def _kontext(session, token="tok", stager=None):
    cfg = ProviderConfig(base_url="https://image.example/prompt", api_token=token, model="kontext")
    return KontextProvider(cfg, session=session, stager=stager)


def test_kontext_requires_token():
    session = DummySession(get=[DummyResp(200)])
    with pytest.raises(ProviderError) as e:
        _kontext(session, token=None).generate(_i2i())
    assert e.value.kind is ErrorKind.AUTH
    assert session.calls == []


def test_kontext_passes_http_input_and_caps_size():
    session = DummySession(get=[DummyResp(200)])
    raw = _kontext(session).generate(_i2i(width=2048, height=768))
    q = _query(raw.payload["image_url"])
    assert q["model"] == "kontext"
    assert q["token"] == "tok"
    assert q["image"] == "https://example.com/in.png"
    assert (q["width"], q["height"]) == ("1024", "768")
    assert raw.payload["input_image"] == "https://example.com/in.png"


def test_kontext_stages_data_uri_input():
    stager = RecordingStager()
    session = DummySession(get=[DummyResp(200)])
    req = _i2i(ref="data:image/png;base64,AAAA")
    raw = _kontext(session, stager=stager).generate(req)
    assert stager.staged == [("data:image/png;base64,AAAA", f"input_{req.request_id}")]
    assert _query(raw.payload["image_url"])["image"] == stager.url


def test_kontext_without_stager_is_unsupported_for_data_uri():
    session = DummySession(get=[DummyResp(200)])
    with pytest.raises(ProviderError) as e:
        _kontext(session).generate(_i2i(ref="data:image/png;base64,AAAA"))
    assert e.value.kind is ErrorKind.UNSUPPORTED
    assert session.calls == []


def test_kontext_staging_failure_is_upstream_failed():
    stager = RecordingStager(error=RuntimeError("upload failed with status 400"))
    with pytest.raises(ProviderError) as e:
        _kontext(DummySession(get=[DummyResp(200)]), stager=stager).generate(
            _i2i(ref="data:image/png;base64,AAAA")
        )
    assert e.value.kind is ErrorKind.UPSTREAM_FAILED


# ---------- replicate ----------

def _replicate(session, clock, token="r8_token", budget=180.0):
    cfg = ProviderConfig(
        base_url="https://api.replicate.example/v1",
        api_token=token,
        model="sdxl:abc",
        poll_interval=3.0,
        poll_budget=budget,
    )
    return ReplicateProvider(cfg, session=session, clock=clock, sleep=clock.sleep)


@pytest.mark.parametrize("token", [None, "", "your_replicate_token_here"])
def test_replicate_missing_or_placeholder_token(clock, token):
    session = DummySession()
    with pytest.raises(ProviderError) as e:
        _replicate(session, clock, token=token).generate(_t2i())
    assert e.value.kind is ErrorKind.AUTH
    assert session.calls == []


def test_replicate_submit_then_poll(clock):
    session = DummySession(
        post=[DummyResp(201, {"id": "p1", "status": "starting"})],
        get=[
            DummyResp(200, {"id": "p1", "status": "processing"}),
            DummyResp(200, {"id": "p1", "status": "succeeded", "output": ["https://cdn.example/p1.png"]}),
        ],
    )
    raw = _replicate(session, clock).generate(_t2i(seed=5))

    assert raw.provider == "replicate"
    assert raw.payload["output"] == ["https://cdn.example/p1.png"]
    assert clock.sleeps == [3.0, 3.0]

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "https://api.replicate.example/v1/predictions")
    assert kwargs["headers"]["Authorization"] == "Token r8_token"
    body = kwargs["json"]
    assert body["version"] == "sdxl:abc"
    assert body["input"]["seed"] == 5
    assert body["input"]["prompt"].endswith(QUALITY_SUFFIX)
    assert "image" not in body["input"]
    assert session.calls[1][1] == "https://api.replicate.example/v1/predictions/p1"


def test_replicate_image_to_image_input(clock):
    session = DummySession(
        post=[DummyResp(201, {"id": "p2", "status": "succeeded", "output": "https://cdn.example/p2.png"})],
    )
    _replicate(session, clock).generate(_i2i())
    assert session.calls[0][2]["json"]["input"]["image"] == "https://example.com/in.png"
    assert len(session.calls) == 1


@pytest.mark.parametrize(
    "final",
    [
        {"id": "p1", "status": "failed", "error": "NSFW"},
        {"id": "p1", "status": "canceled"},
        {"id": "p1", "status": "succeeded", "output": []},
    ],
)
def test_replicate_negative_outcomes_are_upstream_failed(clock, final):
    session = DummySession(post=[DummyResp(201, {"id": "p1", "status": "starting"})], get=[DummyResp(200, final)])
    with pytest.raises(ProviderError) as e:
        _replicate(session, clock).generate(_t2i())
    assert e.value.kind is ErrorKind.UPSTREAM_FAILED


def test_replicate_poll_404_is_upstream_failed(clock):
    session = DummySession(post=[DummyResp(201, {"id": "p1", "status": "starting"})], get=[DummyResp(404)])
    with pytest.raises(ProviderError) as e:
        _replicate(session, clock).generate(_t2i())
    assert e.value.kind is ErrorKind.UPSTREAM_FAILED
    assert e.value.status_code == 404


def test_replicate_transient_poll_errors_keep_polling(clock):
    session = DummySession(
        post=[DummyResp(201, {"id": "p1", "status": "starting"})],
        get=[
            requests.ConnectionError("reset"),
            DummyResp(502),
            DummyResp(200, {"id": "p1", "status": "succeeded", "output": ["https://cdn.example/a.png"]}),
        ],
    )
    raw = _replicate(session, clock).generate(_t2i())
    assert raw.payload["status"] == "succeeded"
    assert len(clock.sleeps) == 3


def test_replicate_poll_budget_exhaustion_times_out(clock):
    session = DummySession(
        post=[DummyResp(201, {"id": "p1", "status": "starting"})],
        get=[DummyResp(200, {"id": "p1", "status": "processing"})],
    )
    with pytest.raises(ProviderError) as e:
        _replicate(session, clock, budget=9.0).generate(_t2i())
    assert e.value.kind is ErrorKind.TIMEOUT
    assert clock.now == pytest.approx(9.0)


def test_replicate_submit_rate_limited(clock):
    session = DummySession(post=[DummyResp(429, text="throttled")])
    with pytest.raises(ProviderError) as e:
        _replicate(session, clock).generate(_t2i())
    assert e.value.kind is ErrorKind.RATE_LIMITED


def test_replicate_poll_rate_limit_keeps_polling_without_resubmitting(clock):
    session = DummySession(
        post=[DummyResp(201, {"id": "p1", "status": "starting"})],
        get=[
            DummyResp(429, text="throttled"),
            DummyResp(200, {"id": "p1", "status": "succeeded", "output": ["https://cdn.example/p1.png"]}),
        ],
    )
    raw = _replicate(session, clock).generate(_t2i())
    assert raw.payload["output"] == ["https://cdn.example/p1.png"]
    assert [c[0] for c in session.calls].count("POST") == 1


def _malformed():
    return DummyResp(200, requests.JSONDecodeError("Expecting value", "<html>", 0))


def test_replicate_malformed_submit_body_is_upstream_failed(clock):
    session = DummySession(post=[_malformed()])
    with pytest.raises(ProviderError) as e:
        _replicate(session, clock).generate(_t2i())
    assert e.value.kind is ErrorKind.UPSTREAM_FAILED
    assert "malformed JSON" in e.value.message


def test_replicate_malformed_poll_body_is_upstream_failed(clock):
    session = DummySession(post=[DummyResp(201, {"id": "p1", "status": "starting"})], get=[_malformed()])
    with pytest.raises(ProviderError) as e:
        _replicate(session, clock).generate(_t2i())
    assert e.value.kind is ErrorKind.UPSTREAM_FAILED


# ---------- prodia ----------

def _prodia(session, clock, token="pk"):
    cfg = ProviderConfig(
        base_url="https://api.prodia.example/v1", api_token=token, model="sdxl", poll_interval=2.0, poll_budget=30.0
    )
    return ProdiaProvider(cfg, session=session, clock=clock, sleep=clock.sleep)


def test_prodia_requires_token(clock):
    with pytest.raises(ProviderError) as e:
        _prodia(DummySession(), clock, token=None).generate(_t2i())
    assert e.value.kind is ErrorKind.AUTH


def test_prodia_job_polling(clock):
    session = DummySession(
        post=[DummyResp(200, {"job": "j1"})],
        get=[
            DummyResp(200, {"job": "j1", "status": "generating"}),
            DummyResp(200, {"job": "j1", "status": "succeeded", "imageUrl": "https://images.prodia.example/j1.png"}),
        ],
    )
    raw = _prodia(session, clock).generate(_t2i())
    assert raw.payload["imageUrl"] == "https://images.prodia.example/j1.png"
    assert raw.payload["job"] == "j1"
    assert session.calls[0][2]["headers"]["X-Prodia-Key"] == "pk"
    assert session.calls[1][1] == "https://api.prodia.example/v1/job/j1"
    assert clock.sleeps == [2.0, 2.0]


def test_prodia_failed_job(clock):
    session = DummySession(post=[DummyResp(200, {"job": "j1"})], get=[DummyResp(200, {"status": "failed"})])
    with pytest.raises(ProviderError) as e:
        _prodia(session, clock).generate(_t2i())
    assert e.value.kind is ErrorKind.UPSTREAM_FAILED


def test_prodia_missing_job_id(clock):
    with pytest.raises(ProviderError) as e:
        _prodia(DummySession(post=[DummyResp(200, {})]), clock).generate(_t2i())
    assert e.value.kind is ErrorKind.UPSTREAM_FAILED


def test_prodia_poll_rate_limit_keeps_polling_without_resubmitting(clock):
    session = DummySession(
        post=[DummyResp(200, {"job": "j1"})],
        get=[
            DummyResp(429, text="throttled"),
            DummyResp(200, {"job": "j1", "status": "succeeded", "imageUrl": "https://images.prodia.example/j1.png"}),
        ],
    )
    raw = _prodia(session, clock).generate(_t2i())
    assert raw.payload["imageUrl"] == "https://images.prodia.example/j1.png"
    assert [c[0] for c in session.calls].count("POST") == 1
    assert clock.sleeps == [2.0, 2.0]


def test_prodia_malformed_submit_body_is_upstream_failed(clock):
    with pytest.raises(ProviderError) as e:
        _prodia(DummySession(post=[_malformed()]), clock).generate(_t2i())
    assert e.value.kind is ErrorKind.UPSTREAM_FAILED


# ---------- mock ----------

def test_mock_placeholder_is_deterministic():
    mock = MockPlaceholder()
    req = _t2i("a business suit on a mannequin", width=640, height=480)
    a = mock.generate(req).payload["image_url"]
    b = mock.generate(req).payload["image_url"]
    assert a == b
    assert a == "https://placehold.co/640x480/1F2937/FFFFFF?text=Business+Professional+Style"


def test_mock_placeholder_uses_prompt_label_without_preset():
    url = MockPlaceholder("https://ph.example/").generate(_t2i("a red bicycle")).payload["image_url"]
    assert url == "https://ph.example/512x512/6366F1/FFFFFF?text=a+red+bicycle"
