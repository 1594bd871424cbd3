"""
Request bodies for the backend generate endpoints.
"""
from typing import Optional
from pydantic import BaseModel

from models import ChatCompletionMessage, GenerationConfig


class TextCompletionRequest(BaseModel):
    api_server: str = ""
    api_type: str = ""
    prompt: str
    # Different text backends read different token-limit names
    max_new_tokens: int = 300
    max_tokens: int = 300
    n_predict: int = 300
    truncation_length: int = 2048
    num_ctx: int = 2048
    temperature: float = 0.7
    top_p: float = 0.5
    top_k: int = 40
    min_p: float = 0.0
    typical_p: float = 1.0
    rep_pen: float = 1.2
    repetition_penalty: float = 1.2
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    stopping_strings: list[str] = []
    stop: list[str] = []
    stream: bool = True


class ChatCompletionRequest(BaseModel):
    chat_completion_source: str = "openai"
    custom_url: Optional[str] = None
    messages: list[ChatCompletionMessage]
    model: str = ""
    max_tokens: int = 300
    temperature: float = 0.7
    top_p: float = 0.5
    top_k: Optional[int] = None
    min_p: Optional[float] = None
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    repetition_penalty: Optional[float] = None
    stop: Optional[list[str]] = None
    stream: bool = True


def build_text_completion_request(
    prompt: str,
    config: GenerationConfig,
    stop: list[str],
) -> TextCompletionRequest:
    preset = config.preset
    return TextCompletionRequest(
        api_server=config.api.api_server,
        api_type=config.api.api_type,
        prompt=prompt,
        max_new_tokens=preset.max_new_tokens,
        max_tokens=preset.max_new_tokens,
        n_predict=preset.max_new_tokens,
        truncation_length=preset.truncation_length,
        num_ctx=preset.truncation_length,
        temperature=preset.temperature,
        top_p=preset.top_p,
        top_k=preset.top_k,
        min_p=preset.min_p,
        typical_p=preset.typical_p,
        rep_pen=preset.rep_pen,
        repetition_penalty=preset.rep_pen,
        frequency_penalty=preset.frequency_penalty,
        presence_penalty=preset.presence_penalty,
        stopping_strings=stop,
        stop=stop,
    )


def build_chat_completion_request(
    messages: list[ChatCompletionMessage],
    config: GenerationConfig,
    stop: list[str],
) -> ChatCompletionRequest:
    preset = config.preset
    api = config.api
    return ChatCompletionRequest(
        chat_completion_source=api.chat_completion_source or "openai",
        custom_url=api.custom_url or None,
        messages=messages,
        model=api.model,
        max_tokens=preset.max_new_tokens,
        temperature=preset.temperature,
        top_p=preset.top_p,
        top_k=preset.top_k if preset.top_k > 0 else None,
        min_p=preset.min_p if preset.min_p > 0 else None,
        frequency_penalty=preset.frequency_penalty,
        presence_penalty=preset.presence_penalty,
        repetition_penalty=preset.rep_pen if preset.rep_pen > 1 else None,
        stop=stop or None,
    )
