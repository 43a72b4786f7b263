"""HTTP client for the hosted inference service.

One POST per call to ``{base_url}/{model_id}``. Non-2xx responses are mapped
onto the error taxonomy and never retried here; retrying is the caller's
policy. A sliding-window limiter keeps the request rate under the RPM budget.
"""

import asyncio
import collections
import logging
import time
from typing import Any

import httpx

from clinical_nlp.errors import InvalidResponseError, ModelLoadingError, ServiceUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://router.huggingface.co/hf-inference/models"
DEFAULT_RETRY_AFTER = 30.0


class _RateLimiter:
    """Sliding-window rate limiter. Tracks call timestamps and sleeps
    before issuing a call that would exceed the RPM budget."""

    def __init__(self, rpm: int):
        self.rpm = rpm
        self._window = 60.0  # seconds
        self._timestamps: collections.deque[float] = collections.deque()
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        if self.rpm <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            self._purge(now)
            if len(self._timestamps) >= self.rpm:
                oldest = self._timestamps[0]
                sleep_for = self._window - (now - oldest) + 0.1
                if sleep_for > 0:
                    logger.debug(f"Rate limiter: sleeping {sleep_for:.1f}s ({self.rpm} RPM)")
                    await asyncio.sleep(sleep_for)
            self._timestamps.append(time.monotonic())

    def _purge(self, now: float) -> None:
        cutoff = now - self._window
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()


class InferenceClient:
    """Thin async adapter over the inference HTTP API.

    Args:
        api_key: Bearer token for the service
        base_url: Service root; the model id is appended as a path
        timeout: Per-request timeout in seconds
        rpm: Request-per-minute budget (0 disables limiting)
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests
    """

    def __init__(
        self,
        api_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        rpm: int = 40,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.request_count = 0
        self._transport = transport
        self._limiter = _RateLimiter(rpm)

    @classmethod
    def from_config(cls, config, transport: httpx.AsyncBaseTransport | None = None) -> "InferenceClient":
        return cls(
            api_key=config.hf_api_key,
            base_url=config.api_url,
            timeout=config.timeout,
            rpm=config.rpm,
            transport=transport,
        )

    async def aquery(self, model_id: str, payload: dict) -> Any:
        """POST ``payload`` to ``model_id`` and return the decoded JSON body.

        Raises:
            ModelLoadingError: The model is still warming up
            ServiceUnavailableError: Missing key, transport failure or non-2xx status
            InvalidResponseError: Body is not JSON or carries an error message
        """
        if not self.api_key:
            raise ServiceUnavailableError(
                "Missing HUGGING_FACE_API_KEY. Set it in the environment or .env file."
            )

        await self._limiter.wait()
        url = f"{self.base_url}/{model_id}"
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as http:
                response = await http.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise ServiceUnavailableError(f"Request to {model_id} timed out") from e
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(f"Unable to connect to inference service: {e}") from e
        finally:
            self.request_count += 1

        return _parse_response(model_id, response)


def _parse_response(model_id: str, response: httpx.Response) -> Any:
    if response.status_code == 503:
        raise ModelLoadingError(model_id, _estimated_wait(response))

    if not response.is_success:
        body = response.text
        logger.error(f"Inference error ({model_id}): {response.status_code} {body[:200]}")
        raise ServiceUnavailableError(
            f"Inference service failed: {response.reason_phrase} - {body}",
            status_code=response.status_code,
        )

    try:
        data = response.json()
    except ValueError as e:
        raise InvalidResponseError(f"Non-JSON response from {model_id}: {response.text[:200]}") from e

    if isinstance(data, dict) and "error" in data:
        message = str(data["error"])
        if "loading" in message.lower():
            raise ModelLoadingError(model_id, _estimated_wait(response))
        raise InvalidResponseError(message)

    return data


def _estimated_wait(response: httpx.Response) -> float:
    """Read the service's ``estimated_time`` hint, falling back to 30 seconds."""
    try:
        data = response.json()
    except ValueError:
        return DEFAULT_RETRY_AFTER
    if isinstance(data, dict):
        try:
            return float(data.get("estimated_time", DEFAULT_RETRY_AFTER))
        except (TypeError, ValueError):
            pass
    return DEFAULT_RETRY_AFTER
