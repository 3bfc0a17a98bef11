# styletransform/api/routes_generate.py
from __future__ import annotations

import base64
import json
import logging
from datetime import datetime
from functools import lru_cache
from typing import Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from styletransform.api import metrics
from styletransform.api.auth import get_caller_id
from styletransform.api.db import Event as DBEvent
from styletransform.api.db import Generation as DBGeneration
from styletransform.api.db import UserUsage, get_db
from styletransform.api.errors import UsageLimitExceeded
from styletransform.api.schemas import GenerateBody, GenerationOut, UsageOut
from styletransform.api.utils.db_retry import commit_with_retry
from styletransform.api.utils.http import fail, ok, ok_list
from styletransform.config import settings
from styletransform.providers import MOCK_METHOD
from styletransform.runtime.models import (
    GenerationRequest,
    GenerationResult,
    GenerationSettings,
    utcnow,
)
from styletransform.runtime.orchestrator import Orchestrator, default_orchestrator
from styletransform.storage.cloudinary import CloudinaryError, CloudinaryUploader

log = logging.getLogger(__name__)

router = APIRouter(tags=["generations"])


# ---------- dependencies ----------
def get_orchestrator() -> Orchestrator:
    return default_orchestrator()


@lru_cache(maxsize=1)
def default_uploader() -> Optional[CloudinaryUploader]:
    """Result re-hosting is optional; None means results keep their provider URL."""
    if not (settings.cloudinary_configured and settings.CLOUDINARY_UPLOAD_RESULTS):
        return None
    try:
        return CloudinaryUploader.from_settings(settings)
    except CloudinaryError as e:
        log.warning("event=cloudinary.unavailable error=%s", e)
        return None


def get_uploader() -> Optional[CloudinaryUploader]:
    return default_uploader()


# ---------- helpers ----------
def _emit(db: Session, user_id: Optional[str], kind: str, message: str, meta: Dict):
    """Emit events, but never crash the request if the events table isn't ready yet."""
    try:
        db.add(DBEvent(user_id=user_id, kind=kind, message=message, meta_json=json.dumps(meta or {})))
        db.commit()
    except SQLAlchemyError as e:
        log.warning("event=events.write_failed kind=%s error=%s", kind, e)
        db.rollback()


def _usage_for(db: Session, user_id: str) -> UserUsage:
    usage = db.get(UserUsage, user_id)
    if usage is None:
        usage = UserUsage(user_id=user_id, generations_used=0, total_generations=0, is_premium=False)
        db.add(usage)
        db.flush()
    return usage


def _limit_for(usage: UserUsage) -> int:
    if usage.is_premium:
        return settings.PREMIUM_GENERATION_LIMIT
    return settings.FREE_GENERATION_LIMIT


def _usage_out(usage: UserUsage) -> UsageOut:
    limit = _limit_for(usage)
    return UsageOut(
        user_id=usage.user_id,
        generations_used=usage.generations_used,
        total_generations=usage.total_generations,
        generation_limit=limit,
        generations_remaining=max(0, limit - usage.generations_used),
        is_premium=bool(usage.is_premium),
        last_generation_at=usage.last_generation_at,
    )


def _to_out(row: DBGeneration) -> GenerationOut:
    return GenerationOut(
        id=row.id,
        type=row.type,
        prompt=row.prompt,
        style_preset=row.style_preset,
        settings=json.loads(row.settings_json or "{}"),
        input_image_url=row.input_image_url,
        image_url=row.image_url,
        thumbnail_url=row.thumbnail_url,
        method=row.method,
        cost=row.cost,
        status=row.status,
        meta=json.loads(row.meta_json or "{}"),
        created_at=row.created_at,
    )


def _persist(db: Session, user_id: str, req: GenerationRequest, result: GenerationResult) -> DBGeneration:
    row = DBGeneration(
        id=result.id,
        user_id=user_id,
        type=req.mode.value,
        prompt=req.prompt,
        style_preset=req.style_preset,
        settings_json=json.dumps(
            {
                "width": req.settings.width,
                "height": req.settings.height,
                "model": req.settings.model,
                "seed": req.settings.seed,
            }
        ),
        input_image_url=req.input_image_ref,
        image_url=result.image_url,
        thumbnail_url=result.thumbnail_url,
        method=result.method,
        cost=result.cost,
        status=result.status.value,
        meta_json=json.dumps(result.meta, default=str),
        created_at=result.created_at,
    )
    db.add(row)
    return row


def _get_owned(db: Session, user_id: str, generation_id: str) -> DBGeneration:
    row = db.get(DBGeneration, generation_id)
    if row is None or row.user_id != user_id:
        raise HTTPException(status_code=404, detail="Generation not found")
    return row


# Cursor format (base64): "<iso8601>|<id>"
def _encode_cursor(ts: datetime, id_: str) -> str:
    raw = f"{ts.isoformat()}|{id_}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def _decode_cursor(cur: str) -> Tuple[datetime, str]:
    raw = base64.urlsafe_b64decode(cur.encode("ascii")).decode("utf-8")
    ts_s, id_s = raw.split("|", 1)
    return datetime.fromisoformat(ts_s), id_s


# ---------- endpoints ----------
@router.post("/generate")
def generate_image(
    body: GenerateBody,
    caller_id: str = Depends(get_caller_id),
    db: Session = Depends(get_db),
    orchestrator: Orchestrator = Depends(get_orchestrator),
    uploader: Optional[CloudinaryUploader] = Depends(get_uploader),
):
    usage = _usage_for(db, caller_id)
    limit = _limit_for(usage)
    if usage.generations_used >= limit:
        metrics.inc("usage.limit.hit")
        raise UsageLimitExceeded(usage.generations_used, limit)

    gen_request = GenerationRequest(
        prompt=body.prompt,
        mode=body.mode,
        input_image_ref=body.image_url,
        style_preset=body.style_preset,
        settings=GenerationSettings(
            width=body.settings.width,
            height=body.settings.height,
            model=body.settings.model,
            seed=body.settings.seed,
        ),
        caller_id=caller_id,
    )
    log.info(
        "event=api.generate.begin request_id=%s user=%s mode=%s",
        gen_request.request_id,
        caller_id,
        gen_request.mode.value,
    )

    # GenerationError propagates to the 500 handler.
    result = orchestrator.orchestrate(gen_request)
    metrics.record_outcome(result)

    if uploader is not None and result.method != MOCK_METHOD:
        result = uploader.rehost(result, public_id=f"{caller_id}_{result.id}")

    row = _persist(db, caller_id, gen_request, result)
    usage.generations_used += 1
    usage.total_generations += 1
    usage.last_generation_at = utcnow()
    commit_with_retry(db)
    db.refresh(row)

    _emit(
        db,
        caller_id,
        "image.generate.ok",
        "ok",
        {"id": row.id, "method": row.method, "cost": str(row.cost), "url": row.image_url},
    )

    return ok(
        {
            "generation": _to_out(row).model_dump(mode="json"),
            "generations_remaining": max(0, limit - usage.generations_used),
        },
        request_id=gen_request.request_id,
    )


@router.get("/generations")
def list_generations(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = Query(None),
    caller_id: str = Depends(get_caller_id),
    db: Session = Depends(get_db),
):
    q = db.query(DBGeneration).filter(DBGeneration.user_id == caller_id)
    if cursor:
        try:
            ts, last_id = _decode_cursor(cursor)
        except ValueError:
            return fail("BAD_CURSOR", "Invalid cursor", request=request, status_code=400)
        q = q.filter(
            (DBGeneration.created_at < ts)
            | ((DBGeneration.created_at == ts) & (DBGeneration.id < last_id))
        )
    rows = q.order_by(DBGeneration.created_at.desc(), DBGeneration.id.desc()).limit(limit + 1).all()

    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = _encode_cursor(rows[-1].created_at, rows[-1].id)
    return ok_list([_to_out(r) for r in rows], next_cursor=next_cursor, request=request)


@router.get("/generations/{generation_id}")
def get_generation(
    request: Request,
    generation_id: str,
    caller_id: str = Depends(get_caller_id),
    db: Session = Depends(get_db),
):
    return ok(_to_out(_get_owned(db, caller_id, generation_id)), request=request)


@router.delete("/generations/{generation_id}")
def delete_generation(
    request: Request,
    generation_id: str,
    caller_id: str = Depends(get_caller_id),
    db: Session = Depends(get_db),
):
    row = _get_owned(db, caller_id, generation_id)
    db.delete(row)
    commit_with_retry(db)
    _emit(db, caller_id, "generation.delete", "deleted", {"id": generation_id})
    return ok({"deleted": generation_id}, request=request)


@router.get("/user/stats")
def user_stats(
    request: Request,
    caller_id: str = Depends(get_caller_id),
    db: Session = Depends(get_db),
):
    usage = _usage_for(db, caller_id)
    commit_with_retry(db)
    return ok(_usage_out(usage), request=request)
