"""Remote model client handle.

The application talks to exactly one remote model, chosen once at startup
from an ordered list of candidates (``AI_MODELS``). The first candidate that
initializes wins; if none does, the pipeline runs on keyword fallbacks only.
The resulting ``ModelClient`` is passed explicitly to every component that
needs it rather than being held in module state.

Model identifiers:
    - Remote models: pydantic-ai ``provider:model`` strings, e.g.
      'google-gla:gemini-2.5-flash' (reads GEMINI_API_KEY)
    - Local OpenAI-compatible servers:
      'openai:{model_name}@http://127.0.0.1:8080/v1'

All calls are bounded by ``AI_TIMEOUT_SECONDS``.
"""

import asyncio
import logging

from openai import AsyncOpenAI
from pydantic_ai import Agent, BinaryContent
from pydantic_ai.models import Model, infer_model
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.profiles.openai import OpenAIModelProfile
from pydantic_ai.providers.openai import OpenAIProvider

from config import Config

logger = logging.getLogger(__name__)


class RemoteModelError(Exception):
    """A remote model call failed."""


class ModelUnavailableError(RemoteModelError):
    """No remote model is configured or initialized."""


def _parse_local_model(model_str: str) -> tuple[str, str] | None:
    """Parse local model string into (model_name, base_url) or None if not local."""
    if model_str.startswith("openai:") and "@" in model_str:
        rest = model_str[7:]  # Remove "openai:" prefix
        model_name, base_url = rest.split("@", 1)
        return model_name, base_url
    return None


def _create_model(model_str: str) -> Model:
    """Create the pydantic-ai model for an identifier.

    Raises:
        Exception: Whatever the provider raises for a bad identifier or
            missing credentials
    """
    parsed = _parse_local_model(model_str)
    if parsed:
        model_name, base_url = parsed
        logger.info("Using local model | model=%s base_url=%s", model_name, base_url)
        # Local servers don't need authentication - use placeholder
        client = AsyncOpenAI(base_url=base_url, api_key="local-model")
        profile = OpenAIModelProfile(supports_json_object_output=False)
        return OpenAIChatModel(
            model_name,
            provider=OpenAIProvider(openai_client=client),
            profile=profile,
        )
    return infer_model(model_str)


class ModelClient:
    """Thin, timeout-bounded wrapper around a pydantic-ai text agent.

    Classification prompts ask for JSON but the response is taken as plain
    text and run through the three-tier parser, since models do not reliably
    honor the format.

    Example:
        >>> client = ModelClient(model, name="google-gla:gemini-2.5-flash", timeout=120)
        >>> text = await client.generate("Classify this", image=jpeg_bytes)
    """

    def __init__(self, model: Model | str, name: str, timeout: float = 120.0):
        self.name = name
        self.timeout = timeout
        self._agent: Agent[None, str] = Agent(model, output_type=str, retries=1)

    async def generate(self, prompt: str, image: bytes | None = None) -> str:
        """Send a prompt (and optional JPEG image) and return the response text.

        Raises:
            asyncio.TimeoutError: The call exceeded the configured timeout
            RemoteModelError: Any other failure
        """
        if image is not None:
            message = [BinaryContent(data=image, media_type="image/jpeg"), prompt]
        else:
            message = prompt

        try:
            result = await asyncio.wait_for(self._agent.run(message), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Model call timed out | model=%s timeout=%.0fs", self.name, self.timeout)
            raise
        except Exception as e:
            raise RemoteModelError(f"{self.name}: {type(e).__name__}: {e}") from e

        usage = result.usage()
        logger.debug(
            "Model call complete | model=%s image=%s requests=%d tokens=%d/%d",
            self.name,
            image is not None,
            usage.requests,
            usage.input_tokens or 0,
            usage.output_tokens or 0,
        )
        return result.output or ""

    def __repr__(self) -> str:
        return f"ModelClient({self.name!r})"


def create_model_client(config: Config) -> ModelClient | None:
    """Initialize the first working model from ``config.ai_models``.

    Args:
        config: Application configuration

    Returns:
        ModelClient, or None when AI is disabled or every candidate fails
    """
    if not config.ai_enabled:
        logger.info("AI classification disabled; using keyword fallback only")
        return None

    for model_str in config.ai_models:
        try:
            model = _create_model(model_str)
            client = ModelClient(model, name=model_str, timeout=config.ai_timeout_seconds)
        except Exception as e:
            logger.warning("Model init failed | model=%s error=%s", model_str, e)
            continue
        logger.info("Model client ready | model=%s timeout=%.0fs", model_str, config.ai_timeout_seconds)
        return client

    logger.error("No model could be initialized | candidates=%s", ",".join(config.ai_models))
    return None
