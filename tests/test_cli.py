import styletransform.cli as cli
from fakes import FakeTier
from styletransform.providers.image_base import ErrorKind, ProviderError
from styletransform.runtime.orchestrator import GenerationError, Orchestrator


def _patch_orchestrator(monkeypatch, orchestrator, seen=None):
    def fake_build(order=None, **kwargs):
        if seen is not None:
            seen.append(order)
        return orchestrator

    monkeypatch.setattr(cli, "build_orchestrator", fake_build)
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)


def test_prints_result_and_skipped_tiers(monkeypatch, capsys):
    seen = []
    tiers = [
        FakeTier("replicate", [ProviderError(ErrorKind.AUTH, "REPLICATE_API_TOKEN missing")]),
        FakeTier("pollinations", ["https://image.example/bike.png"]),
    ]
    _patch_orchestrator(monkeypatch, Orchestrator(tiers, sleep=lambda s: None), seen)

    code = cli.main(["a", "red", "bicycle", "--tiers", "Replicate:pollinations", "--seed", "3"])

    out = capsys.readouterr().out
    assert code == 0
    assert seen == [["replicate", "pollinations"]]
    assert "[OK] method=pollinations" in out
    assert "url=https://image.example/bike.png" in out
    assert "skipped replicate: AuthError" in out


def test_generation_error_exits_1(monkeypatch, capsys):
    class Broken:
        def orchestrate(self, request):
            raise GenerationError("mock fallback failed")

    _patch_orchestrator(monkeypatch, Broken())
    assert cli.main(["anything"]) == 1
    assert "[FAIL]" in capsys.readouterr().out


def test_image_to_image_needs_input(monkeypatch, capsys):
    _patch_orchestrator(monkeypatch, None)
    assert cli.main(["edit me", "--mode", "image-to-image"]) == 2
    assert "input image" in capsys.readouterr().out
