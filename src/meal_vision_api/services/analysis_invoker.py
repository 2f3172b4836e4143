"""
Bounded invocation of the vision model.

Issues the analysis call for a resolved ModelSelection under a hard
timeout and converts every provider failure into an InvocationOutcome.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from meal_vision_api.models.analysis import AnalysisRequest, ModelSelection, RawModelResponse

from .prompts import MEAL_ANALYSIS_USER_TEXT, build_system_prompt
from .vision_provider.base import ProviderError, ProviderErrorKind, VisionModelProvider

logger = logging.getLogger(__name__)


class InvocationFailureKind(str, Enum):
    """Why the analysis call produced no response."""

    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    MALFORMED_REQUEST = "malformed_request"
    MODEL_UNAVAILABLE = "model_unavailable"
    PROVIDER_ERROR = "provider_error"


_KIND_MAP = {
    ProviderErrorKind.TIMEOUT: InvocationFailureKind.TIMEOUT,
    ProviderErrorKind.TRANSPORT: InvocationFailureKind.TRANSPORT,
    ProviderErrorKind.AUTH: InvocationFailureKind.AUTH,
    ProviderErrorKind.RATE_LIMIT: InvocationFailureKind.RATE_LIMIT,
    ProviderErrorKind.BAD_REQUEST: InvocationFailureKind.MALFORMED_REQUEST,
    ProviderErrorKind.PROVIDER: InvocationFailureKind.PROVIDER_ERROR,
}


@dataclass(frozen=True)
class InvocationOutcome:
    """Either a raw response or a classified failure."""

    response: RawModelResponse | None = None
    model_used: str | None = None
    used_fallback_model: bool = False
    failure: InvocationFailureKind | None = None
    error: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.response is not None


class AnalysisInvoker:
    """Runs exactly one bounded analysis call per request."""

    def __init__(
        self,
        provider: VisionModelProvider,
        timeout_seconds: float = 30.0,
        max_tokens: int = 2000,
        temperature: float = 0.2,
        retry_on_transport_error: bool = False,
    ):
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.retry_on_transport_error = retry_on_transport_error

    async def invoke(
        self, selection: ModelSelection, request: AnalysisRequest
    ) -> InvocationOutcome:
        """
        Invoke the resolved model on the request's image.

        Args:
            selection: Model selection; ``resolved_model`` None means no call
            request: The analysis request carrying image and goals

        Returns:
            InvocationOutcome with the raw response or a failure kind
        """
        request_id = request.request_id
        model = selection.resolved_model

        if model is None:
            reason = selection.unavailable_reason or "No vision model is available"
            logger.warning(f"[{request_id}] Skipping analysis call: {reason}")
            return InvocationOutcome(
                failure=InvocationFailureKind.MODEL_UNAVAILABLE,
                error=reason,
            )

        image_data_url = request.image_data_url
        if image_data_url is None:
            return InvocationOutcome(
                model_used=model,
                used_fallback_model=selection.used_fallback_model,
                failure=InvocationFailureKind.MALFORMED_REQUEST,
                error="Analysis request carries no image",
            )

        system_prompt = build_system_prompt(
            request.health_goals, request.dietary_preferences
        )
        if selection.used_fallback_model:
            system_prompt += (
                "\n\nNOTE: This analysis is being performed by a fallback model "
                "with limited capabilities."
            )

        max_attempts = 2 if self.retry_on_transport_error else 1
        attempts = 0
        while True:
            attempts += 1
            outcome = await self._attempt(
                model, system_prompt, image_data_url, selection, request_id, attempts
            )
            if (
                outcome.failure == InvocationFailureKind.TRANSPORT
                and attempts < max_attempts
            ):
                logger.info(f"[{request_id}] Retrying analysis once after transport error")
                continue
            return outcome

    async def _attempt(
        self,
        model: str,
        system_prompt: str,
        image_data_url: str,
        selection: ModelSelection,
        request_id: str,
        attempts: int,
    ) -> InvocationOutcome:
        logger.info(f"[{request_id}] Invoking {model} (attempt {attempts})")
        try:
            response = await asyncio.wait_for(
                self.provider.analyze(
                    model=model,
                    system_prompt=system_prompt,
                    user_text=MEAL_ANALYSIS_USER_TEXT,
                    image_data_url=image_data_url,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = f"Analysis call exceeded {self.timeout_seconds:g}s and was cancelled"
            logger.warning(f"[{request_id}] {error}")
            return InvocationOutcome(
                model_used=model,
                used_fallback_model=selection.used_fallback_model,
                failure=InvocationFailureKind.TIMEOUT,
                error=error,
                attempts=attempts,
            )
        except ProviderError as e:
            kind = _KIND_MAP.get(e.kind, InvocationFailureKind.PROVIDER_ERROR)
            logger.warning(f"[{request_id}] Analysis call failed ({kind.value}): {e.message}")
            return InvocationOutcome(
                model_used=model,
                used_fallback_model=selection.used_fallback_model,
                failure=kind,
                error=e.message,
                attempts=attempts,
            )
        except Exception as e:
            logger.exception(f"[{request_id}] Provider raised an unexpected error")
            return InvocationOutcome(
                model_used=model,
                used_fallback_model=selection.used_fallback_model,
                failure=InvocationFailureKind.PROVIDER_ERROR,
                error=f"Unexpected provider error: {e}",
                attempts=attempts,
            )

        logger.info(
            f"[{request_id}] Response received from {response.model} "
            f"in {response.latency_ms} ms, tokens: {response.usage.total_tokens}"
        )
        logger.debug(f"[{request_id}] Raw response: {response.text[:500]}")
        return InvocationOutcome(
            response=response,
            model_used=model,
            used_fallback_model=selection.used_fallback_model,
            attempts=attempts,
        )
