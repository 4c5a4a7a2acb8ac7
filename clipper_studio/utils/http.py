"""HTTP helpers for the remote capabilities (worker, transcription, LLM, vision)."""
import logging
from typing import Any, List, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from clipper_studio.errors import ExternalServiceError

logger = logging.getLogger(__name__)


def extract_error_detail(response: httpx.Response) -> str:
    """Extract a concise error detail from a provider response."""
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:1000] or f"HTTP {response.status_code}"

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            error = error.get("message") or error.get("type")
        parts: List[str] = []
        if error:
            parts.append(str(error))
        if payload.get("detail"):
            parts.append(str(payload["detail"]))
        if parts:
            return ": ".join(parts)
    return f"HTTP {response.status_code}"


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ExternalServiceError) and exc.transient


def retrying(attempts: int, backoff_seconds: float) -> AsyncRetrying:
    """Retry transient service errors with exponential backoff."""
    return AsyncRetrying(
        retry=retry_if_exception(is_transient),
        stop=stop_after_attempt(max(attempts, 1)),
        wait=wait_exponential(multiplier=backoff_seconds, max=60),
        reraise=True,
    )


async def request_json(
    method: str,
    url: str,
    service: str,
    timeout: float,
    headers: Optional[dict] = None,
    **kwargs,
) -> Any:
    """
    Send a request and decode a JSON response.

    Raises:
        ExternalServiceError: Transport failure, non-2xx status or non-JSON body
    """
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            if method.upper() == "GET":
                response = await client.get(url, headers=headers, **kwargs)
            else:
                response = await client.post(url, headers=headers, **kwargs)
    except httpx.TimeoutException as exc:
        raise ExternalServiceError(f"{service} timed out", diagnostics=str(exc), transient=True) from exc
    except httpx.RequestError as exc:
        raise ExternalServiceError(f"Unable to reach {service}", diagnostics=str(exc), transient=True) from exc

    if response.status_code >= 400:
        detail = extract_error_detail(response)
        transient = response.status_code == 429 or response.status_code >= 500
        logger.warning(f"{service} returned {response.status_code}: {detail}")
        raise ExternalServiceError(
            f"{service} request failed ({response.status_code})",
            diagnostics=detail,
            transient=transient,
        )

    try:
        return response.json()
    except ValueError as exc:
        raise ExternalServiceError(
            f"{service} returned an invalid response",
            diagnostics=response.text[:1000],
        ) from exc
