"""
Model availability checking and model selection.

One catalog lookup per request decides whether the preferred model can be
used, which fallback to use when substitution is allowed, or why no model
can be used at all.
"""

import asyncio
import logging
from dataclasses import dataclass

from meal_vision_api.models.analysis import AvailabilityFailureKind, ModelSelection

from .vision_provider.base import ProviderError, ProviderErrorKind, VisionModelProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityResult:
    """Outcome of one catalog lookup."""

    available: bool
    fallback_model: str | None = None
    failure: AvailabilityFailureKind | None = None
    reason: str | None = None

    @property
    def retryable(self) -> bool:
        """Rate limits and transport failures may succeed on a later request."""
        return self.failure in (
            AvailabilityFailureKind.RATE_LIMIT,
            AvailabilityFailureKind.TRANSPORT,
        )


class ModelAvailabilityChecker:
    """Confirms model availability against the provider catalog."""

    def __init__(self, provider: VisionModelProvider, timeout_seconds: float = 10.0):
        self.provider = provider
        self.timeout_seconds = timeout_seconds

    async def check(
        self,
        desired: str,
        fallbacks: list[str] | tuple[str, ...] = (),
        request_id: str = "-",
    ) -> AvailabilityResult:
        """
        Check whether ``desired`` is listed, else find the first listed fallback.

        Calls the catalog exactly once with no retries.

        Args:
            desired: Preferred model id
            fallbacks: Ordered fallback candidates
            request_id: Request id used to tag log lines

        Returns:
            AvailabilityResult describing the outcome
        """
        logger.info(f"[{request_id}] Checking availability of model: {desired}")

        try:
            listed = await asyncio.wait_for(
                self.provider.list_models(), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            reason = f"Model catalog did not respond within {self.timeout_seconds:g}s"
            logger.warning(f"[{request_id}] {reason}")
            return AvailabilityResult(
                available=False, failure=AvailabilityFailureKind.TRANSPORT, reason=reason
            )
        except ProviderError as e:
            result = self._from_provider_error(e, desired)
            logger.warning(f"[{request_id}] Model availability check failed: {result.reason}")
            return result

        if any(self.provider.model_matches(desired, m) for m in listed):
            logger.info(f"[{request_id}] Model {desired} is available")
            return AvailabilityResult(available=True)

        for candidate in fallbacks:
            if any(self.provider.model_matches(candidate, m) for m in listed):
                reason = f"Model {desired} not found; {candidate} is available as fallback"
                logger.warning(f"[{request_id}] {reason}")
                return AvailabilityResult(
                    available=False,
                    fallback_model=candidate,
                    failure=AvailabilityFailureKind.NONE_AVAILABLE,
                    reason=reason,
                )

        reason = f"Model {desired} not found and no fallback model is available"
        logger.warning(f"[{request_id}] {reason} (listed {len(listed)} models)")
        return AvailabilityResult(
            available=False, failure=AvailabilityFailureKind.NONE_AVAILABLE, reason=reason
        )

    @staticmethod
    def _from_provider_error(error: ProviderError, desired: str) -> AvailabilityResult:
        if error.kind == ProviderErrorKind.AUTH:
            return AvailabilityResult(
                available=False,
                failure=AvailabilityFailureKind.AUTH,
                reason=f"No access to {desired}: credentials were rejected ({error.status_code})",
            )
        if error.kind == ProviderErrorKind.RATE_LIMIT:
            return AvailabilityResult(
                available=False,
                failure=AvailabilityFailureKind.RATE_LIMIT,
                reason="Model catalog is rate limited; try again shortly",
            )
        return AvailabilityResult(
            available=False,
            failure=AvailabilityFailureKind.TRANSPORT,
            reason=f"Could not reach model catalog: {error.message}",
        )


def resolve_model_selection(
    preferred: str,
    force_mode: bool,
    availability: AvailabilityResult,
) -> ModelSelection:
    """
    Turn an availability result into the request's ModelSelection.

    In force mode the preferred model is used only when positively
    confirmed; there is never a silent substitution.
    """
    if availability.available:
        return ModelSelection(
            preferred_model=preferred,
            force_mode=force_mode,
            resolved_model=preferred,
        )

    if force_mode:
        return ModelSelection(
            preferred_model=preferred,
            force_mode=True,
            unavailable_reason=(
                f"Preferred model {preferred} is unavailable and force mode "
                f"forbids substitution: {availability.reason}"
            ),
            availability_failure=availability.failure,
        )

    if availability.fallback_model:
        return ModelSelection(
            preferred_model=preferred,
            force_mode=False,
            resolved_model=availability.fallback_model,
            used_fallback_model=True,
            availability_failure=availability.failure,
        )

    if availability.retryable:
        # Availability is advisory when substitution is allowed
        return ModelSelection(
            preferred_model=preferred,
            force_mode=False,
            resolved_model=preferred,
            availability_failure=availability.failure,
        )

    return ModelSelection(
        preferred_model=preferred,
        force_mode=False,
        unavailable_reason=f"No usable vision model: {availability.reason}",
        availability_failure=availability.failure,
    )
