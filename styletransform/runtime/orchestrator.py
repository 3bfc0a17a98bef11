# styletransform/runtime/orchestrator.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from decimal import Decimal
from functools import lru_cache
from typing import Callable, Dict, List, Mapping, Optional, Sequence

import requests

from styletransform.config import Settings, settings as default_settings
from styletransform.providers import (
    MOCK_METHOD,
    ErrorKind,
    ImageProvider,
    ImageStager,
    MockPlaceholder,
    ProviderConfig,
    ProviderError,
    registry,
)
from styletransform.providers.image_base import translate_request_error
from styletransform.runtime.event_logger import EventLogger
from styletransform.runtime.models import GenerationRequest, GenerationResult, ProviderAttempt
from styletransform.runtime.normalizer import normalize
from styletransform.runtime.retry import RetryPolicy, with_retry
from styletransform.storage.cloudinary import CloudinaryUploader

log = logging.getLogger(__name__)


class GenerationError(RuntimeError):
    """Not even the placeholder could be produced. Callers treat this as an internal error."""


@dataclass
class TierOutcome:
    """Result of one tier: exactly one of `result` / `error` is set."""

    attempt: ProviderAttempt
    result: Optional[GenerationResult] = None
    error: Optional[ProviderError] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class Orchestrator:
    """
    Try each tier in order, first success wins; if all fail, return the
    mock placeholder. Tiers run strictly one after another.
    """

    def __init__(
        self,
        tiers: Sequence[ImageProvider],
        retry_policy: Optional[RetryPolicy] = None,
        price_table: Optional[Mapping[str, Decimal]] = None,
        mock: Optional[MockPlaceholder] = None,
        event_logger: Optional[EventLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tiers: List[ImageProvider] = list(tiers)
        self.retry_policy = retry_policy or RetryPolicy()
        self.price_table = price_table
        self.mock = mock or MockPlaceholder()
        self.event_logger = event_logger
        self._sleep = sleep
        self._clock = clock

    @property
    def tier_names(self) -> List[str]:
        return [t.name for t in self.tiers]

    def orchestrate(
        self,
        request: GenerationRequest,
        deadline: Optional[float] = None,
    ) -> GenerationResult:
        started = self._clock()
        self._event(
            "image.route.begin",
            {
                "request_id": request.request_id,
                "caller_id": request.caller_id,
                "mode": request.mode.value,
                "tiers": self.tier_names,
            },
        )

        tried: List[str] = []
        error_chain: List[Dict] = []
        for adapter in self.tiers:
            tried.append(adapter.name)
            outcome = self._try_tier(adapter, request, deadline)
            if outcome.ok:
                result = self._with_bookkeeping(outcome.result, tried, error_chain, started)
                self._event(
                    "image.generate.ok",
                    {
                        "request_id": request.request_id,
                        "provider": adapter.name,
                        "retry_count": outcome.attempt.retry_count,
                        "elapsed_ms": result.meta["elapsed_ms"],
                    },
                )
                return result
            error_chain.append(outcome.attempt.to_chain_entry())

        return self._mock_fallback(request, tried, error_chain, started)

    # ---- tiers ----

    def _try_tier(
        self,
        adapter: ImageProvider,
        request: GenerationRequest,
        deadline: Optional[float],
    ) -> TierOutcome:
        attempt = ProviderAttempt(provider_name=adapter.name)

        if request.is_image_to_image and not adapter.supports_image_to_image:
            err = ProviderError(
                ErrorKind.UNSUPPORTED, "image-to-image not supported", provider=adapter.name
            )
            self._event("image.tier.skip", {"request_id": request.request_id, "provider": adapter.name})
            return self._failed(attempt, err)

        if deadline is not None and self._clock() >= deadline:
            err = ProviderError(ErrorKind.TIMEOUT, "request deadline passed", provider=adapter.name)
            return self._failed(attempt, err)

        def call() -> GenerationResult:
            raw = adapter.generate(request, deadline=deadline)
            return normalize(
                raw,
                adapter.name,
                result_id=request.request_id,
                price_table=self.price_table,
            )

        def count_retry(n: int, delay: float, err: BaseException) -> None:
            attempt.retry_count += 1

        try:
            result = with_retry(
                call,
                max_attempts=self.retry_policy.max_attempts,
                base_delay=self.retry_policy.base_delay,
                backoff=self.retry_policy.backoff,
                sleep=self._sleep,
                on_retry=count_retry,
                label=adapter.name,
                deadline=deadline,
                clock=self._clock,
            )
        except ProviderError as e:
            return self._failed(attempt, e)
        except requests.JSONDecodeError as e:
            err = ProviderError(ErrorKind.UPSTREAM_FAILED, f"malformed JSON body: {e}", provider=adapter.name)
            return self._failed(attempt, err)
        except requests.RequestException as e:
            return self._failed(attempt, translate_request_error(e, adapter.name))
        except Exception as e:
            log.exception("provider=%s event=image.tier.crash", adapter.name)
            err = ProviderError(
                ErrorKind.UPSTREAM_FAILED, f"{e.__class__.__name__}: {e}", provider=adapter.name
            )
            return self._failed(attempt, err)

        attempt.succeeded = True
        log.info(
            "provider=%s event=image.tier.ok request_id=%s retries=%s",
            adapter.name,
            request.request_id,
            attempt.retry_count,
        )
        return TierOutcome(attempt=attempt, result=result)

    def _failed(self, attempt: ProviderAttempt, err: ProviderError) -> TierOutcome:
        attempt.succeeded = False
        attempt.error_kind = err.kind.value
        attempt.error_message = err.message
        if err.kind is ErrorKind.AUTH:
            log.warning(
                "provider=%s event=image.tier.fail kind=%s config_problem=true error=%s",
                attempt.provider_name,
                err.kind.value,
                err.message,
            )
        elif err.kind is ErrorKind.UNSUPPORTED:
            log.info("provider=%s event=image.tier.skip reason=%s", attempt.provider_name, err.message)
        else:
            log.warning(
                "provider=%s event=image.tier.fail kind=%s retries=%s error=%s",
                attempt.provider_name,
                err.kind.value,
                attempt.retry_count,
                err.message,
            )
        self._event("image.tier.fail", attempt.to_chain_entry(), level="warning")
        return TierOutcome(attempt=attempt, error=err)

    # ---- mock ----

    def _mock_fallback(
        self,
        request: GenerationRequest,
        tried: List[str],
        error_chain: List[Dict],
        started: float,
    ) -> GenerationResult:
        try:
            raw = self.mock.generate(request)
            result = normalize(raw, MOCK_METHOD, result_id=request.request_id, price_table={})
        except Exception as e:
            log.exception("event=image.mock.fail request_id=%s", request.request_id)
            raise GenerationError(f"mock fallback failed: {e}") from e

        result = self._with_bookkeeping(result, tried, error_chain, started)
        log.warning(
            "event=image.generate.mock request_id=%s tiers=%s",
            request.request_id,
            ",".join(tried) or "-",
        )
        self._event(
            "image.generate.mock",
            {"request_id": request.request_id, "tiers_tried": tried},
            level="warning",
        )
        return result

    # ---- helpers ----

    def _with_bookkeeping(
        self,
        result: GenerationResult,
        tried: List[str],
        error_chain: List[Dict],
        started: float,
    ) -> GenerationResult:
        meta = dict(result.meta)
        meta["tiers_tried"] = list(tried)
        meta["error_chain"] = list(error_chain)
        meta["elapsed_ms"] = int((self._clock() - started) * 1000)
        return replace(result, meta=meta)

    def _event(self, event: str, data: Dict, level: str = "info") -> None:
        if self.event_logger is None:
            return
        try:
            self.event_logger.write(event, data, level=level)
        except OSError as e:
            log.warning("event=event_log.write_failed error=%s", e)


def orchestrate(
    request: GenerationRequest,
    tiers: Sequence[ImageProvider],
    **kwargs,
) -> GenerationResult:
    """Functional form: build a throwaway Orchestrator for `tiers` and run it."""
    deadline = kwargs.pop("deadline", None)
    return Orchestrator(tiers, **kwargs).orchestrate(request, deadline=deadline)


# ---- construction from settings ---------------------------------------------

def provider_configs(cfg: Settings) -> Dict[str, ProviderConfig]:
    return {
        "pollinations": ProviderConfig(
            base_url=cfg.POLLINATIONS_BASE_URL,
            api_token=cfg.POLLINATIONS_API_TOKEN or None,
            enabled=cfg.POLLINATIONS_ENABLED,
            timeout=cfg.POLLINATIONS_TIMEOUT_SECS,
            model=cfg.POLLINATIONS_MODEL,
            extra={
                "max_url_length": cfg.POLLINATIONS_MAX_URL_LENGTH,
                "inline": cfg.POLLINATIONS_INLINE_IMAGES,
            },
        ),
        "kontext": ProviderConfig(
            base_url=cfg.KONTEXT_BASE_URL,
            api_token=cfg.KONTEXT_API_TOKEN or None,
            enabled=cfg.KONTEXT_ENABLED,
            timeout=cfg.KONTEXT_TIMEOUT_SECS,
            model=cfg.KONTEXT_MODEL,
            extra={"max_url_length": cfg.POLLINATIONS_MAX_URL_LENGTH},
        ),
        "prodia": ProviderConfig(
            base_url=cfg.PRODIA_BASE_URL,
            api_token=cfg.PRODIA_API_TOKEN or None,
            enabled=cfg.PRODIA_ENABLED,
            timeout=cfg.PRODIA_TIMEOUT_SECS,
            poll_interval=cfg.PRODIA_POLL_INTERVAL_SECS,
            poll_budget=cfg.PRODIA_POLL_BUDGET_SECS,
            model=cfg.PRODIA_MODEL,
        ),
        "replicate": ProviderConfig(
            base_url=cfg.REPLICATE_BASE_URL,
            api_token=cfg.REPLICATE_API_TOKEN or None,
            enabled=cfg.REPLICATE_ENABLED,
            timeout=cfg.REPLICATE_TIMEOUT_SECS,
            poll_interval=cfg.REPLICATE_POLL_INTERVAL_SECS,
            poll_budget=cfg.REPLICATE_POLL_BUDGET_SECS,
            model=cfg.REPLICATE_MODEL,
        ),
    }


def build_tiers(
    cfg: Settings,
    order: Optional[Sequence[str]] = None,
    stager: Optional[ImageStager] = None,
    session: Optional[requests.Session] = None,
) -> List[ImageProvider]:
    """Instantiate enabled adapters in tier order. Unknown names are a configuration error."""
    configs = provider_configs(cfg)
    session = session or requests.Session()
    tiers: List[ImageProvider] = []
    for name in order or cfg.tier_order:
        if registry.get(name) is None or name not in configs:
            raise ValueError(f"Unknown generation tier '{name}'. Known: {sorted(configs)}")
        config = configs[name]
        if not config.enabled:
            log.info("provider=%s event=tier.disabled", name)
            continue
        kwargs = {"session": session}
        if name == "kontext":
            kwargs["stager"] = stager
        tiers.append(registry.create(name, config, **kwargs))
    return tiers


def build_orchestrator(
    cfg: Optional[Settings] = None,
    order: Optional[Sequence[str]] = None,
    stager: Optional[ImageStager] = None,
) -> Orchestrator:
    cfg = cfg or default_settings
    if stager is None and cfg.cloudinary_configured:
        stager = CloudinaryUploader.from_settings(cfg)
    return Orchestrator(
        build_tiers(cfg, order=order, stager=stager),
        retry_policy=RetryPolicy(
            max_attempts=cfg.RETRY_MAX_ATTEMPTS,
            base_delay=cfg.RETRY_BASE_DELAY_SECS,
            backoff=cfg.RETRY_BACKOFF,
        ),
        price_table=dict(cfg.TIER_PRICES),
        mock=MockPlaceholder(cfg.MOCK_PLACEHOLDER_BASE_URL),
        event_logger=EventLogger(cfg.events_dir / "events.jsonl"),
    )


@lru_cache(maxsize=1)
def default_orchestrator() -> Orchestrator:
    return build_orchestrator()


def generate(request: GenerationRequest) -> GenerationResult:
    """The one entry point request handlers call."""
    return default_orchestrator().orchestrate(request)
