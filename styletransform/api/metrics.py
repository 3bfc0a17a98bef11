# styletransform/api/metrics.py
from __future__ import annotations

import threading
from typing import Dict

from styletransform.providers import MOCK_METHOD
from styletransform.runtime.models import GenerationResult

# Thread-safe in-process metrics store
_LOCK = threading.Lock()
_METRICS: Dict[str, int] = {}

def _inc(key: str, n: int = 1) -> None:
    if not key:
        return
    with _LOCK:
        _METRICS[key] = _METRICS.get(key, 0) + int(n)

def inc_ok(provider: str) -> None:
    _inc(f"image.ok.{(provider or '').strip().lower()}")

def inc_fail(provider: str) -> None:
    _inc(f"image.fail.{(provider or '').strip().lower()}")

def inc(key: str, n: int = 1) -> None:
    """Generic counter (e.g., 'images_generated', 'usage.limit.hit')."""
    _inc(key, n)

def record_outcome(result: GenerationResult) -> None:
    """Count one finished orchestration: each failed tier, then the winner."""
    for entry in result.meta.get("error_chain") or []:
        inc_fail(entry.get("provider") or "")
    if result.method == MOCK_METHOD:
        inc("images_mock")
    else:
        inc_ok(result.method)
    inc("images_generated")

def snapshot() -> Dict[str, int]:
    """Return a copy of all counters."""
    with _LOCK:
        return dict(_METRICS)