"""
LLM Services package initialization.
"""
from .sse import SSEDecoder, decode_stream, clean_response, extract_delta
from .payloads import (
    TextCompletionRequest,
    ChatCompletionRequest,
    build_text_completion_request,
    build_chat_completion_request,
)
from .stream_handler import (
    BackendClient,
    TEXT_COMPLETION_ENDPOINT,
    CHAT_COMPLETION_ENDPOINT,
    ABORT_ENDPOINT,
    DIRECT_ABORT_ENDPOINT,
)

__all__ = [
    "SSEDecoder",
    "decode_stream",
    "clean_response",
    "extract_delta",
    "TextCompletionRequest",
    "ChatCompletionRequest",
    "build_text_completion_request",
    "build_chat_completion_request",
    "BackendClient",
    "TEXT_COMPLETION_ENDPOINT",
    "CHAT_COMPLETION_ENDPOINT",
    "ABORT_ENDPOINT",
    "DIRECT_ABORT_ENDPOINT",
]
