# styletransform/api/routes_catalog.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from styletransform.api import metrics
from styletransform.api.routes_generate import get_orchestrator
from styletransform.api.utils.http import ok, ok_list
from styletransform.runtime.orchestrator import Orchestrator
from styletransform.runtime.styles import list_presets

router = APIRouter(tags=["catalog"])


@router.get("/styles")
def styles(request: Request):
    return ok_list(list_presets(), request=request)


@router.get("/models")
def models(request: Request, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Models per configured tier, in tier order."""
    return ok(
        {
            "tiers": orchestrator.tier_names,
            "models": {t.name: t.available_models() for t in orchestrator.tiers},
        },
        request=request,
    )


@router.get("/metrics")
def get_metrics(request: Request):
    return ok(metrics.snapshot(), request=request)
