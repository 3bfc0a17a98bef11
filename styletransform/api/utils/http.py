# styletransform/api/utils/http.py
"""
Response envelopes and request ids.

`assign_request_id` runs on every HTTP request: it keeps a caller-supplied
x-request-id or mints one, stores it on `request.state`, and echoes it in the
response header. Envelopes repeat the id in their body. POST /generate
answers with the generation's own id instead, so the response, the stored
row and the event log line up under one key.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Iterable, Optional
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from styletransform.api.schemas import ErrorEnvelope, ErrorObject, ListEnvelope, OkEnvelope

REQUEST_ID_HEADER = "x-request-id"


async def assign_request_id(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
    response = await call_next(request)
    # A handler that answered with its own id (e.g. a generation id) wins.
    response.headers.setdefault(REQUEST_ID_HEADER, request.state.request_id)
    return response


def request_id_of(request: Optional[Request]) -> str:
    rid = getattr(request.state, "request_id", None) if request is not None else None
    return rid or uuid4().hex


def _to_jsonable(item: Any) -> Any:
    if isinstance(item, BaseModel):
        return item.model_dump(mode="json")
    return item


def _respond(
    envelope: BaseModel,
    request_id: str,
    status_code: int,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    hdrs = {REQUEST_ID_HEADER: request_id}
    if headers:
        hdrs.update(headers)
    return JSONResponse(content=envelope.model_dump(mode="json"), status_code=status_code, headers=hdrs)


# ---- success envelopes -------------------------------------------------------
def ok(
    data: Any,
    *,
    request: Optional[Request] = None,
    request_id: Optional[str] = None,
    status_code: int = 200,
) -> JSONResponse:
    rid = request_id or request_id_of(request)
    return _respond(OkEnvelope(data=_to_jsonable(data), request_id=rid), rid, status_code)


def ok_list(
    items: Iterable[Any],
    next_cursor: Optional[str] = None,
    *,
    request: Optional[Request] = None,
) -> JSONResponse:
    rid = request_id_of(request)
    env = ListEnvelope(data=[_to_jsonable(x) for x in items], next_cursor=next_cursor, request_id=rid)
    return _respond(env, rid, 200)


# ---- error envelopes ---------------------------------------------------------
def fail(
    code: str,
    message: str,
    *,
    request: Optional[Request] = None,
    details: Optional[Dict[str, Any]] = None,
    status_code: int = 400,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    rid = request_id_of(request)
    env = ErrorEnvelope(error=ErrorObject(code=code, message=message, details=details), request_id=rid)
    return _respond(env, rid, status_code, headers)
