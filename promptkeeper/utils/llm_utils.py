"""
Chat-completion façade for the prompt testing and optimisation endpoints.

Every supported vendor speaks the OpenAI-compatible wire format, so a
provider is a capability record (``ModelProvider``) built by
``openai_compatible_provider`` rather than a class per vendor. The
``ProviderRegistry`` holding them is built once by ``build_default_registry``
at application start and handed to routes through ``app.state``.
"""
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import httpx
from openai import APIConnectionError, APIStatusError, OpenAI
from sqlalchemy.orm import Session

from promptkeeper.config import settings
from promptkeeper.enums import ProviderType
from promptkeeper.errors import InvalidInputError, ProviderError
from promptkeeper.metrics import LLM_CALL_LATENCY_SECONDS, LLM_CALLS_TOTAL
from promptkeeper.services.settings_service import get_settings_map

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "chat/completions"
SYSTEM_PROMPT_SETTING_KEY = "default_system_prompt"

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert prompt engineer. Rewrite the prompt you are given so it "
    "is clearer, more specific and easier for a language model to follow. Keep "
    "the original intent and any placeholders unchanged. Reply with the "
    "improved prompt only."
)


@dataclass
class ChatMessage:
    role: str
    content: str


@dataclass
class ChatOptions:
    model: str = ""
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: int = 0


ChatCall = Callable[[str, str, ChatOptions, Sequence[ChatMessage]], str]
ChatStreamCall = Callable[[str, str, ChatOptions, Sequence[ChatMessage]], Iterator[str]]


@dataclass(frozen=True)
class ModelProvider:
    """What the application needs from one model vendor."""

    name: str
    default_model: str
    default_api_url: str
    normalize_url: Callable[[str], str]
    call_chat: ChatCall
    call_chat_stream: ChatStreamCall


def normalize_api_url(url: Optional[str]) -> str:
    """
    Turns a configured base URL into a chat-completions endpoint.

    ``https://host/v1`` and ``https://host/v1/`` both become
    ``https://host/v1/chat/completions``; a URL already ending in
    ``/chat/completions`` is kept. Blank input gives "".
    """
    url = (url or "").strip()
    if not url:
        return ""
    if url.endswith("/" + CHAT_COMPLETIONS_PATH):
        return url
    if url.endswith("/"):
        return url + CHAT_COMPLETIONS_PATH
    return url + "/" + CHAT_COMPLETIONS_PATH


def base_url_for(endpoint: str) -> str:
    """Strips ``/chat/completions`` so the OpenAI client can append it again."""
    suffix = "/" + CHAT_COMPLETIONS_PATH
    if endpoint.endswith(suffix):
        return endpoint[: -len(suffix)]
    return endpoint.rstrip("/")


def build_completion_kwargs(options: ChatOptions, messages: Sequence[ChatMessage], stream: bool) -> dict:
    kwargs = {
        "model": options.model,
        "messages": [asdict(m) for m in messages],
        "stream": stream,
    }
    if options.temperature is not None:
        kwargs["temperature"] = options.temperature
    if options.top_p is not None:
        kwargs["top_p"] = options.top_p
    if options.max_tokens:
        kwargs["max_tokens"] = options.max_tokens
    return kwargs


def _completion_text(completion) -> str:
    try:
        content = completion.choices[0].message.content
    except (AttributeError, IndexError, TypeError):
        content = None
    if content is None:
        raise ValueError("no message content in response")
    return content


def openai_compatible_provider(
    name: str,
    default_model: str,
    default_api_url: str,
    transport: Optional[httpx.BaseTransport] = None,
    timeout: Optional[float] = None,
) -> ModelProvider:
    """
    Builds a ModelProvider for an OpenAI-compatible chat-completions API.

    Args:
        name: Provider name, used in logs, metrics and error messages.
        default_model: Model used when the caller names none.
        default_api_url: Endpoint used when none is configured.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
        timeout: Request timeout in seconds; defaults to ``LLM_TIMEOUT``.
    """
    request_timeout = settings.LLM_TIMEOUT if timeout is None else timeout

    def normalize(url: str) -> str:
        return normalize_api_url(url) or default_api_url

    def resolve(options: ChatOptions) -> ChatOptions:
        if options.model:
            return options
        return ChatOptions(
            model=default_model,
            temperature=options.temperature,
            top_p=options.top_p,
            max_tokens=options.max_tokens,
        )

    def make_client(api_key: str, api_url: str) -> OpenAI:
        # Retries are left to the caller; one request per call.
        return OpenAI(
            api_key=api_key,
            base_url=base_url_for(normalize(api_url)),
            timeout=request_timeout,
            max_retries=0,
            http_client=httpx.Client(transport=transport, timeout=request_timeout),
        )

    def call_chat(api_key: str, api_url: str, options: ChatOptions, messages: Sequence[ChatMessage]) -> str:
        options = resolve(options)
        logger.info(f"Calling {name} chat API with model {options.model} ({len(messages)} message(s))")

        start_time = time.time()
        status = "success"
        try:
            with make_client(api_key, api_url) as client:
                completion = client.chat.completions.create(**build_completion_kwargs(options, messages, stream=False))
            try:
                return _completion_text(completion)
            except ValueError:
                status = "error_response"
                raise ProviderError(f"{name} API returned an unexpected response")
        except APIStatusError as e:
            status = "error_http"
            logger.error(f"{name} API returned status {e.status_code}: {e.message}")
            raise ProviderError(f"{name} API request failed with status {e.status_code}: {e.message}") from e
        except APIConnectionError as e:
            status = "error_connection"
            logger.error(f"{name} API connection error: {e}")
            raise ProviderError(f"{name} API connection error: {e}") from e
        finally:
            latency = time.time() - start_time
            LLM_CALL_LATENCY_SECONDS.labels(llm_provider=name, llm_model=options.model).observe(latency)
            LLM_CALLS_TOTAL.labels(llm_provider=name, llm_model=options.model, status=status).inc()

    def call_chat_stream(
        api_key: str, api_url: str, options: ChatOptions, messages: Sequence[ChatMessage]
    ) -> Iterator[str]:
        options = resolve(options)
        logger.info(f"Streaming {name} chat API with model {options.model} ({len(messages)} message(s))")

        start_time = time.time()
        status = "success"
        try:
            with make_client(api_key, api_url) as client:
                stream = client.chat.completions.create(**build_completion_kwargs(options, messages, stream=True))
                for chunk in stream:
                    for choice in chunk.choices or []:
                        text = choice.delta.content if choice.delta is not None else None
                        if text:
                            yield text
        except APIStatusError as e:
            status = "error_http"
            logger.error(f"{name} API stream returned status {e.status_code}: {e.message}")
            raise ProviderError(f"{name} API request failed with status {e.status_code}: {e.message}") from e
        except APIConnectionError as e:
            status = "error_connection"
            logger.error(f"{name} API stream connection error: {e}")
            raise ProviderError(f"{name} API connection error: {e}") from e
        finally:
            latency = time.time() - start_time
            LLM_CALL_LATENCY_SECONDS.labels(llm_provider=name, llm_model=options.model).observe(latency)
            LLM_CALLS_TOTAL.labels(llm_provider=name, llm_model=options.model, status=status).inc()

    return ModelProvider(
        name=name,
        default_model=default_model,
        default_api_url=default_api_url,
        normalize_url=normalize,
        call_chat=call_chat,
        call_chat_stream=call_chat_stream,
    )


PROVIDER_DEFAULTS: Dict[ProviderType, Tuple[str, str]] = {
    ProviderType.ALIYUN: ("qwen-turbo", "https://dashscope.aliyuncs.com/compatible-mode/v1/chat/completions"),
    ProviderType.DEEPSEEK: ("deepseek-chat", "https://api.deepseek.com/chat/completions"),
    ProviderType.DOUBAO: ("doubao-pro-32k", "https://ark.cn-beijing.volces.com/api/v3/chat/completions"),
    ProviderType.GLM: ("glm-4-flash", "https://open.bigmodel.cn/api/paas/v4/chat/completions"),
    ProviderType.KIMI: ("moonshot-v1-8k", "https://api.moonshot.cn/v1/chat/completions"),
}


class ProviderRegistry:
    """Maps provider names to ModelProviders."""

    def __init__(self):
        self._providers: Dict[str, ModelProvider] = {}

    def register(self, provider_type, provider: ModelProvider) -> None:
        key = provider_type.value if isinstance(provider_type, ProviderType) else str(provider_type)
        self._providers[key] = provider

    def get(self, provider_type) -> ModelProvider:
        key = provider_type.value if isinstance(provider_type, ProviderType) else str(provider_type or "")
        provider = self._providers.get(key)
        if provider is None:
            raise InvalidInputError(f"Provider '{key}' not found")
        return provider

    def supported(self) -> List[str]:
        return sorted(self._providers)


def build_default_registry(
    transport: Optional[httpx.BaseTransport] = None, timeout: Optional[float] = None
) -> ProviderRegistry:
    registry = ProviderRegistry()
    for provider_type, (model, api_url) in PROVIDER_DEFAULTS.items():
        registry.register(
            provider_type,
            openai_compatible_provider(provider_type.value, model, api_url, transport=transport, timeout=timeout),
        )
    return registry


def provider_setting_keys(provider_name: str) -> Tuple[str, str, str]:
    """Returns the settings keys for a provider's API key, URL and model."""
    return f"{provider_name}_api_key", f"{provider_name}_api_url", f"{provider_name}_model"


@dataclass
class ProviderConfig:
    provider: ModelProvider
    api_key: str
    api_url: str
    model: str
    system_prompt: str = field(default=DEFAULT_SYSTEM_PROMPT)


def load_provider_config(db: Session, registry: ProviderRegistry, provider_name: Optional[str]) -> ProviderConfig:
    """
    Resolves a provider and its stored credentials.

    Raises:
        InvalidInputError: Unknown provider, or no API key configured.
    """
    name = provider_name or ProviderType.ALIYUN.value
    provider = registry.get(name)
    values = get_settings_map(db)
    key_key, url_key, model_key = provider_setting_keys(provider.name)
    api_key = values.get(key_key, "")
    if not api_key:
        raise InvalidInputError(f"{provider.name} API Key not configured")
    return ProviderConfig(
        provider=provider,
        api_key=api_key,
        api_url=values.get(url_key, ""),
        model=values.get(model_key, "") or provider.default_model,
        system_prompt=values.get(SYSTEM_PROMPT_SETTING_KEY, "") or DEFAULT_SYSTEM_PROMPT,
    )
