import httpx
import pytest
from prometheus_client import REGISTRY

from promptkeeper.errors import InvalidInputError, ProviderError
from promptkeeper.services.settings_service import update_settings
from promptkeeper.utils.llm_utils import (
    DEFAULT_SYSTEM_PROMPT,
    ChatMessage,
    ChatOptions,
    base_url_for,
    build_completion_kwargs,
    build_default_registry,
    load_provider_config,
    normalize_api_url,
    openai_compatible_provider,
    provider_setting_keys,
)

MESSAGES = [ChatMessage(role="user", content="Say hi")]


@pytest.mark.parametrize("url,expected", [
    ("https://api.example.com/v1", "https://api.example.com/v1/chat/completions"),
    ("https://api.example.com/v1/", "https://api.example.com/v1/chat/completions"),
    ("https://api.example.com/v1/chat/completions", "https://api.example.com/v1/chat/completions"),
    ("  ", ""),
    (None, ""),
])
def test_normalize_api_url(url, expected):
    assert normalize_api_url(url) == expected


def test_base_url_for_strips_the_completions_path():
    assert base_url_for("https://api.example.com/v1/chat/completions") == "https://api.example.com/v1"
    assert base_url_for("https://api.deepseek.com/chat/completions") == "https://api.deepseek.com"


def test_build_completion_kwargs_omits_unset_options():
    body = build_completion_kwargs(ChatOptions(model="m"), MESSAGES, stream=False)
    assert body == {"model": "m", "messages": [{"role": "user", "content": "Say hi"}], "stream": False}

    body = build_completion_kwargs(ChatOptions(model="m", temperature=0.2, top_p=0.9, max_tokens=64), MESSAGES, stream=True)
    assert body["temperature"] == 0.2
    assert body["top_p"] == 0.9
    assert body["max_tokens"] == 64
    assert body["stream"] is True


def test_call_chat_uses_default_url_and_model(chat_backend, provider_registry):
    provider = provider_registry.get("deepseek")
    reply = provider.call_chat("sk-test", "", ChatOptions(), MESSAGES)

    assert reply == "Optimized prompt"
    sent = chat_backend.requests[0]
    assert sent["url"] == "https://api.deepseek.com/chat/completions"
    assert sent["headers"]["authorization"] == "Bearer sk-test"
    assert sent["body"]["model"] == "deepseek-chat"


def test_call_chat_normalizes_configured_url(chat_backend, provider_registry):
    provider = provider_registry.get("kimi")
    provider.call_chat("k", "https://proxy.local/v1/", ChatOptions(model="custom"), MESSAGES)
    assert chat_backend.requests[0]["url"] == "https://proxy.local/v1/chat/completions"
    assert chat_backend.requests[0]["body"]["model"] == "custom"


def test_call_chat_stream_yields_delta_content(provider_registry):
    provider = provider_registry.get("glm")
    chunks = list(provider.call_chat_stream("k", "", ChatOptions(), MESSAGES))
    assert chunks == ["Hel", "lo"]


def test_http_error_becomes_provider_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(401, text="bad key"))
    provider = openai_compatible_provider("aliyun", "qwen-turbo", "https://example.invalid/chat/completions", transport=transport)
    before = REGISTRY.get_sample_value(
        "promptkeeper_llm_calls_total", {"llm_provider": "aliyun", "llm_model": "qwen-turbo", "status": "error_http"}
    ) or 0.0

    with pytest.raises(ProviderError) as exc_info:
        provider.call_chat("k", "", ChatOptions(), MESSAGES)

    assert "401" in exc_info.value.message
    after = REGISTRY.get_sample_value(
        "promptkeeper_llm_calls_total", {"llm_provider": "aliyun", "llm_model": "qwen-turbo", "status": "error_http"}
    )
    assert after == before + 1


def test_malformed_response_becomes_provider_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"unexpected": True}))
    provider = openai_compatible_provider("aliyun", "qwen-turbo", "https://example.invalid/chat/completions", transport=transport)
    with pytest.raises(ProviderError):
        provider.call_chat("k", "", ChatOptions(), MESSAGES)


def test_connection_error_becomes_provider_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = openai_compatible_provider(
        "aliyun", "qwen-turbo", "https://example.invalid/chat/completions", transport=httpx.MockTransport(refuse)
    )
    with pytest.raises(ProviderError):
        provider.call_chat("k", "", ChatOptions(), MESSAGES)
    with pytest.raises(ProviderError):
        list(provider.call_chat_stream("k", "", ChatOptions(), MESSAGES))


def test_registry_rejects_unknown_provider():
    registry = build_default_registry()
    assert registry.supported() == ["aliyun", "deepseek", "doubao", "glm", "kimi"]
    with pytest.raises(InvalidInputError):
        registry.get("openai")


def test_load_provider_config_requires_api_key(db_session, provider_registry):
    with pytest.raises(InvalidInputError) as exc_info:
        load_provider_config(db_session, provider_registry, "deepseek")
    assert exc_info.value.message == "deepseek API Key not configured"


def test_load_provider_config_reads_settings(db_session, provider_registry):
    key_key, url_key, model_key = provider_setting_keys("aliyun")
    update_settings(db_session, {key_key: "sk-1", url_key: "https://dash.local/v1"})

    cfg = load_provider_config(db_session, provider_registry, None)
    assert cfg.provider.name == "aliyun"
    assert cfg.api_key == "sk-1"
    assert cfg.api_url == "https://dash.local/v1"
    assert cfg.model == "qwen-turbo"
    assert cfg.system_prompt == DEFAULT_SYSTEM_PROMPT

    update_settings(db_session, {model_key: "qwen-max", "default_system_prompt": "Be brief."})
    cfg = load_provider_config(db_session, provider_registry, "aliyun")
    assert cfg.model == "qwen-max"
    assert cfg.system_prompt == "Be brief."
