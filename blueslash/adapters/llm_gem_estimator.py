"""LLM gem estimation through pydantic-ai and OpenRouter."""

import logging

from pydantic_ai import Agent
from pydantic_ai.models.openrouter import OpenRouterModel
from pydantic_ai.providers.openrouter import OpenRouterProvider
from pydantic_ai.settings import ModelSettings

from blueslash.core import errors
from blueslash.core.config import Settings
from blueslash.domain.gem import GemEstimate


logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are a helpful assistant that evaluates household tasks and assigns gem values "
    "based on effort and time required."
)


def build_gem_prompt(*, description: str, rubric: str) -> str:
    """User prompt asking for a 5-25 gem value under the household rubric."""
    return (
        "Based on the following guidelines, determine how many gems this task should be worth. "
        "Return only a number between 5 and 25.\n\n"
        f"Guidelines:\n{rubric}\n\n"
        f"Task to evaluate: {description}"
    )


def create_gem_agent(settings: Settings) -> Agent[None, GemEstimate]:
    """Create the estimation agent backed by OpenRouter."""
    api_key = settings.require_credential("openrouter_api_key", "OpenRouter API key")
    model = OpenRouterModel(model_name=settings.model_id, provider=OpenRouterProvider(api_key=api_key))
    return Agent(
        model=model,
        output_type=GemEstimate,
        system_prompt=SYSTEM_PROMPT,
        model_settings=ModelSettings(temperature=settings.gem_estimate_temperature, max_tokens=500),
        retries=1,
    )


class OpenRouterGemEstimator:
    """GemEstimatorPort implementation; the agent is built on first use."""

    def __init__(self, *, settings: Settings, agent: Agent[None, GemEstimate] | None = None) -> None:
        self._settings = settings
        self._agent = agent

    def _get_agent(self) -> Agent[None, GemEstimate]:
        if self._agent is None:
            self._agent = create_gem_agent(self._settings)
        return self._agent

    async def estimate_gems(self, *, description: str, rubric: str) -> int:
        """Ask the model for a gem value.

        Raises:
            LLMError: Missing credentials, transport failure or unusable output.
        """
        try:
            agent = self._get_agent()
            result = await agent.run(build_gem_prompt(description=description, rubric=rubric))
        except Exception as e:
            logger.exception("Gem estimation failed")
            msg = f"Gem estimation failed: {e}"
            raise errors.LLMError(msg) from e

        estimate = result.output
        logger.info("Estimated %d gems", estimate.gems, extra={"reasoning": estimate.reasoning})
        return estimate.gems
