"""Provider calls through LiteLLM.

Every provider is reduced to one contract: complete(model, messages) -> text.
"""

import logging
import os

from .errors import ProviderError, ProviderUnavailable

logger = logging.getLogger(__name__)

# provider name -> (LiteLLM prefix, environment variables holding the key)
PROVIDERS: dict[str, tuple[str, tuple[str, ...]]] = {
    "openai": ("openai", ("OPENAI_API_KEY",)),
    "anthropic": ("anthropic", ("ANTHROPIC_API_KEY",)),
    "google": ("gemini", ("GOOGLE_API_KEY", "GEMINI_API_KEY")),
    "openrouter": ("openrouter", ("OPENROUTER_API_KEY",)),
}


def resolve_api_key(provider: str) -> str:
    """Return the API key for provider from the environment.

    Raises ProviderUnavailable when no key is set.
    """
    if provider not in PROVIDERS:
        raise ProviderUnavailable(f"unknown provider {provider!r}")
    env_vars = PROVIDERS[provider][1]
    for var in env_vars:
        key = os.environ.get(var)
        if key:
            return key
    raise ProviderUnavailable(
        f"no API key for {provider}: set {' or '.join(env_vars)} "
        f"in the environment or a .env file"
    )


def model_string(provider: str, model_id: str) -> str:
    """Return the LiteLLM model string for a provider's model identifier."""
    prefix = PROVIDERS[provider][0]
    if provider == "openrouter":
        # OpenRouter ids are "org/model" and "openrouter" is itself an org,
        # so only a three-part id already carries the LiteLLM prefix.
        if model_id.startswith("openrouter/") and model_id.count("/") >= 2:
            return model_id
    elif model_id.startswith(f"{prefix}/"):
        return model_id
    return f"{prefix}/{model_id}"


def complete(
    provider: str,
    model_id: str,
    messages: list[dict],
    *,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> str:
    """Send messages to the provider and return the reply text.

    Raises ProviderUnavailable when the key is missing and ProviderError for
    any failure of the call itself.
    """
    import litellm

    litellm.suppress_debug_info = True

    api_key = resolve_api_key(provider)
    model_str = model_string(provider, model_id)

    completion_kwargs = dict(model=model_str, messages=messages, api_key=api_key)
    if temperature is not None:
        completion_kwargs["temperature"] = temperature
    if max_tokens is not None:
        completion_kwargs["max_tokens"] = max_tokens

    logger.debug("calling %s with %d messages", model_str, len(messages))
    try:
        response = litellm.completion(**completion_kwargs)
    except litellm.AuthenticationError as e:
        raise ProviderError(f"{provider} rejected the API key: {e}") from e
    except litellm.RateLimitError as e:
        raise ProviderError(f"{provider} rate limit reached: {e}") from e
    except Exception as e:
        raise ProviderError(f"LLM call failed: {e}") from e

    if not response.choices:
        raise ProviderError(f"{provider} returned no choices")
    content = response.choices[0].message.content
    return content or ""


class ProviderClient:
    """Binds complete() to a settings object so the model can change at runtime.

    Callable as client(model_id, messages, **options), which is the shape
    the session and the router expect.
    """

    def __init__(self, settings):
        self.settings = settings

    def __call__(self, model_id: str, messages: list[dict], **options) -> str:
        return complete(self.settings.provider, model_id, messages, **options)
