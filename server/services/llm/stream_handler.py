"""
LLM Stream Handler - Streams generations from a SillyTavern-compatible backend
"""
import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from config import settings
from models import CompleteEvent, ErrorEvent, StreamEvent, TokenEvent
from utils import get_logger
from .sse import TRANSPORT_ERRORS, decode_stream

logger = get_logger("llm.stream")

TEXT_COMPLETION_ENDPOINT = "/api/backends/text-completions/generate"
CHAT_COMPLETION_ENDPOINT = "/api/backends/chat-completions/generate"
ABORT_ENDPOINT = "/api/backends/text-completions/abort"
# Abort sent straight to a KoboldCpp-style backend, bypassing the proxy
DIRECT_ABORT_ENDPOINT = "/api/extra/abort"


class BackendClient:
    """
    Thin client for the backend's generate and abort endpoints.

    An httpx.AsyncClient can be injected (tests use one with a MockTransport);
    otherwise a client is opened per request.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        log_requests: Optional[bool] = None,
    ):
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        self._client = client
        self.log_requests = settings.log_requests if log_requests is None else log_requests

    @staticmethod
    def _timeout() -> httpx.Timeout:
        return httpx.Timeout(
            connect=settings.connect_timeout,
            read=settings.read_timeout,
            write=30.0,
            pool=10.0,
        )

    @asynccontextmanager
    async def _http(self):
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self._timeout()) as client:
                yield client

    async def stream_completion(
        self,
        endpoint: str,
        body: dict,
        request_type: str = "instruct",
        model: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        POST a generate request and yield decoded stream events.

        The last event is always a CompleteEvent or an ErrorEvent; transport
        failures and non-2xx responses become an ErrorEvent, never an exception.

        Args:
            endpoint: Backend path, one of the *_ENDPOINT constants
            body: JSON request body
            request_type: Label stored in the request log
            model: Model name stored in the request log
        """
        url = f"{self.base_url}{endpoint}"
        start_time = time.time()
        status = "success"
        error_message = None
        final_text = ""

        try:
            async with self._http() as client:
                async with client.stream("POST", url, json=body, timeout=self._timeout()) as response:
                    if not response.is_success:
                        error_text = (await response.aread()).decode("utf-8", errors="replace")
                        status = "error"
                        error_message = f"Backend error {response.status_code}: {error_text}"
                        logger.warning("Generate request to %s failed: %s", endpoint, error_message)
                        yield ErrorEvent(message=error_message)
                        return

                    async for event in decode_stream(response.aiter_text()):
                        if isinstance(event, TokenEvent):
                            final_text = event.accumulated
                        elif isinstance(event, CompleteEvent):
                            final_text = event.text
                        elif isinstance(event, ErrorEvent):
                            status = "error"
                            error_message = event.message
                        yield event
        except TRANSPORT_ERRORS as e:
            status = "error"
            error_message = str(e) or "Streaming failed"
            logger.warning("Could not reach backend at %s: %s", url, error_message)
            yield ErrorEvent(message=error_message)
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        finally:
            if self.log_requests:
                await self._log(endpoint, request_type, model, body, final_text, start_time, status, error_message)

    async def abort(self, api_server: str = "") -> None:
        """Best-effort out-of-band abort. Failures are logged and ignored."""
        async with self._http() as client:
            targets = [f"{self.base_url}{ABORT_ENDPOINT}"]
            if api_server:
                targets.append(f"{api_server.rstrip('/')}{DIRECT_ABORT_ENDPOINT}")
            for url in targets:
                try:
                    await client.post(url, timeout=5.0)
                except TRANSPORT_ERRORS as e:
                    logger.debug("Abort request to %s failed: %s", url, e)

    @staticmethod
    async def _log(endpoint, request_type, model, body, final_text, start_time, status, error_message):
        from routers.logs import log_request

        duration_ms = int((time.time() - start_time) * 1000)
        try:
            await log_request(
                request_type=request_type,
                model=model,
                full_request=body,
                full_response={"content": final_text} if final_text else None,
                duration_ms=duration_ms,
                status=status,
                error_message=error_message,
                endpoint=endpoint,
            )
        except Exception as log_err:
            # Logging must never break a generation, but keep it visible
            logger.warning("Failed to log request: %s", log_err)
