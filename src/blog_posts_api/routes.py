"""HTTP handlers for the /posts resource."""

from typing import Any, TypeVar

import structlog
from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from blog_posts_api.errors import PostNotFoundError, PostValidationError, StoreError
from blog_posts_api.metrics import posts_created_total, posts_deleted_total, posts_updated_total
from blog_posts_api.models import PostCreate, PostUpdate
from blog_posts_api.post_store import PostStore

log = structlog.get_logger()

router = APIRouter(prefix="/posts", tags=["posts"])

_ModelT = TypeVar("_ModelT", bound=BaseModel)

GENERIC_ERROR_DETAIL = "Internal server error"


def _store(request: Request) -> PostStore:
    store: PostStore = request.app.state.post_store
    return store


async def _json_object(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise PostValidationError("Request body must be valid JSON") from exc
    if not isinstance(body, dict):
        raise PostValidationError("Request body must be a JSON object")
    return body


def _parse(model: type[_ModelT], body: dict[str, Any]) -> _ModelT:
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        raise PostValidationError.from_pydantic(exc) from exc


@router.get("")
async def list_posts(request: Request) -> dict[str, list[dict[str, Any]]]:
    posts = await _store(request).list_posts()
    return {"blogs": [post.serialize() for post in posts]}


@router.get("/{post_id}")
async def get_post(request: Request, post_id: str) -> dict[str, Any]:
    post = await _store(request).get(post_id)
    return post.serialize()


@router.post("", status_code=201)
async def create_post(request: Request) -> dict[str, Any]:
    fields = _parse(PostCreate, await _json_object(request))
    post = await _store(request).create(fields)
    posts_created_total.add(1)
    await log.ainfo("post_created", post_id=post.id, author=post.author.display_name)
    return post.serialize()


@router.put("/{post_id}", status_code=204, response_class=Response)
async def update_post(request: Request, post_id: str) -> Response:
    body = await _json_object(request)
    body_id = body.get("id")
    if body_id != post_id:
        raise PostValidationError(
            f"Request path id ({post_id}) and request body id ({body_id}) must match"
        )
    fields = _parse(PostUpdate, body)
    await _store(request).update(post_id, fields)
    posts_updated_total.add(1)
    await log.ainfo("post_updated", post_id=post_id, fields=sorted(fields.changes()))
    return Response(status_code=204)


@router.delete("/{post_id}", status_code=204, response_class=Response)
async def delete_post(request: Request, post_id: str) -> Response:
    removed = await _store(request).delete(post_id)
    posts_deleted_total.add(1, {"removed": removed})
    await log.ainfo("post_deleted", post_id=post_id, removed=removed)
    return Response(status_code=204)


async def _validation_error(request: Request, exc: Exception) -> JSONResponse:
    await log.ainfo("request_rejected", path=request.url.path, reason=str(exc))
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _store_error(request: Request, exc: Exception) -> JSONResponse:
    await log.aexception("request_failed", path=request.url.path, exc_info=exc)
    return _internal_error_response()


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    # Starlette re-raises after responding; the server logs the traceback.
    return _internal_error_response()


def _internal_error_response() -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": GENERIC_ERROR_DETAIL})


def register_error_handlers(app: FastAPI) -> None:
    """Map the error taxonomy onto HTTP status codes; internal detail never leaves."""
    app.add_exception_handler(PostValidationError, _validation_error)
    app.add_exception_handler(PostNotFoundError, _not_found)
    app.add_exception_handler(StoreError, _store_error)
    app.add_exception_handler(Exception, _unexpected_error)
