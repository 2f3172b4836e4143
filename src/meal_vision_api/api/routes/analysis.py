"""Meal image analysis API routes."""

import asyncio
import contextlib
import json
import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Request, Response
from starlette.datastructures import FormData, UploadFile

from meal_vision_api.api.dependencies import MealSaverDep, PipelineDep
from meal_vision_api.models.analysis import AnalyzeImageResponse, DebugInfo
from meal_vision_api.services.image_extraction import BufferedUpload, parse_string_list
from meal_vision_api.services.pipeline import PipelineResult

router = APIRouter()
logger = logging.getLogger(__name__)

# How often to check whether the client went away while the model runs
DISCONNECT_POLL_SECONDS = 0.5

# nginx's "client closed request"
CLIENT_CLOSED_REQUEST = 499


def new_request_id() -> str:
    return f"req_{uuid4().hex[:12]}"


async def read_body(request: Request, request_id: str) -> Any:
    """
    Read the request body in whatever shape the client sent.

    Form posts become FormData with uploads read into memory, JSON objects
    become dicts, and anything else (including unparseable JSON) is kept as
    a string or bytes.
    """
    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        items = []
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                value = BufferedUpload(value.filename, value.content_type, await value.read())
            items.append((key, value))
        return FormData(items)

    raw = await request.body()
    if content_type.startswith("application/json") or content_type.startswith("text/"):
        text = raw.decode("utf-8", errors="replace")
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            logger.info(f"[{request_id}] Body is not valid JSON; treating it as a raw string")
            return text
    return raw


def body_field(body: Any, name: str) -> Any:
    """A named field from a form or JSON body; repeated form fields come back as a list."""
    if isinstance(body, FormData):
        values = body.getlist(name)
        if not values:
            return None
        return values if len(values) > 1 else values[0]
    if isinstance(body, dict):
        return body.get(name)
    return None


def _text_field(body: Any, name: str) -> str | None:
    value = body_field(body, name)
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


async def run_until_disconnect(
    request: Request, coro, request_id: str
) -> PipelineResult | None:
    """
    Run the pipeline as a task, cancelling it if the client disconnects.

    Returns None when the request was abandoned.
    """
    task = asyncio.create_task(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if task in done:
                return task.result()
            if await request.is_disconnected():
                logger.info(f"[{request_id}] Client disconnected; cancelling analysis")
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                return None
    finally:
        if not task.done():
            task.cancel()


@router.post(
    "/analyze-image",
    response_model=AnalyzeImageResponse,
    responses={CLIENT_CLOSED_REQUEST: {"description": "Client disconnected"}},
)
async def analyze_image(
    request: Request,
    pipeline: PipelineDep,
    saver: MealSaverDep,
):
    """
    Analyze a meal photo against the user's health goals.

    Accepts multipart form data or JSON. Handled failures still return
    HTTP 200 with ``success: false``, the fallback analysis and ``errors``.
    """
    request_id = new_request_id()
    logger.info(f"[{request_id}] Analysis request received")

    body = await read_body(request, request_id)
    user_id = _text_field(body, "userId")
    meal_name = _text_field(body, "mealName")

    result = await run_until_disconnect(
        request,
        pipeline.run(
            body,
            health_goals=parse_string_list(body_field(body, "healthGoals")),
            dietary_preferences=parse_string_list(body_field(body, "dietaryPreferences")),
            request_id=request_id,
        ),
        request_id,
    )
    if result is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    analysis = result.analysis
    meal_saved = False
    meal_id = image_url = save_error = None

    if saver is not None:
        outcome = await saver.save(result, user_id=user_id, meal_name=meal_name)
        analysis = outcome.analysis
        meal_saved = outcome.saved
        meal_id = outcome.meal_id
        image_url = outcome.image_url
        save_error = outcome.error
    elif user_id:
        save_error = "Meal storage is not available"

    selection = result.selection
    logger.info(
        f"[{request_id}] Analysis complete: success={result.success}, "
        f"fallback={analysis.fallback}, saved={meal_saved}"
    )

    return AnalyzeImageResponse(
        success=result.success,
        request_id=request_id,
        analysis=analysis,
        errors=list(result.errors),
        debug=DebugInfo(
            processing_steps=list(result.processing_steps),
            stages=[stage.value for stage in result.stages],
            model_used=result.model_used,
            used_fallback_model=bool(selection and selection.used_fallback_model),
            force_mode=selection.force_mode if selection else analysis.model_info.force_mode,
        ),
        meal_saved=meal_saved,
        meal_id=meal_id,
        image_url=image_url,
        save_error=save_error,
    )
