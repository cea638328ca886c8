"""
Oracle clients for WIP Commit.

The review pipeline talks to two external judgment services: a cheap
summarization oracle called once per diff chunk and a classification oracle
called once (or twice, with commit-message generation) per run. Both are
fallible and slow, so neither is allowed to raise: failures come back as an
unsuccessful OracleResponse and the caller bounds every call with a timeout.
"""

import abc
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import openai

from ..config import OracleConfig

logger = logging.getLogger(__name__)


@dataclass
class OracleResponse:
    """Result of one oracle call."""
    text: str
    succeeded: bool
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> 'OracleResponse':
        return cls(text="", succeeded=False, error=error)


class SummarizationOracle(abc.ABC):
    """Turns a diff chunk into a short natural-language summary."""

    @abc.abstractmethod
    async def summarize(self, text: str, timeout: float) -> OracleResponse:
        """Summarize text within timeout seconds."""


class ClassificationOracle(abc.ABC):
    """Answers a review prompt, bounded in time and conversation turns."""

    @abc.abstractmethod
    async def classify(self, prompt: str, timeout: float, max_turns: int) -> OracleResponse:
        """Answer prompt within timeout seconds using at most max_turns turns."""


class NullOracle(SummarizationOracle, ClassificationOracle):
    """Stand-in used when no oracle backend is configured."""

    REASON = "oracle not configured"

    async def summarize(self, text: str, timeout: float) -> OracleResponse:
        return OracleResponse.failure(self.REASON)

    async def classify(self, prompt: str, timeout: float, max_turns: int) -> OracleResponse:
        return OracleResponse.failure(self.REASON)


SUMMARY_SYSTEM_PROMPT = (
    "You are a git diff summarizer. Your only job is to summarize code changes. "
    "Never mention tools, commands or actions you might take."
)

REVIEW_SYSTEM_PROMPT = (
    "You review an AI coding assistant's work against its task. "
    "You always answer with a single JSON object and nothing else."
)


class OpenAIOracle(SummarizationOracle, ClassificationOracle):
    """Both oracles backed by an OpenAI-compatible chat completions API."""

    def __init__(self, config: OracleConfig,
                 client_factory: Optional[Callable[[], 'openai.AsyncOpenAI']] = None):
        """
        Initialize oracle with configuration.

        Args:
            config: Oracle connection settings
            client_factory: Builds the async client (injectable for tests)
        """
        self.config = config
        self._client_factory = client_factory or self._default_client

    def _default_client(self) -> 'openai.AsyncOpenAI':
        return openai.AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            max_retries=0
        )

    async def summarize(self, text: str, timeout: float) -> OracleResponse:
        return await self._complete(
            model=self.config.summary_model,
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            prompt=text,
            max_tokens=300,
            timeout=timeout,
            attempts=1
        )

    async def classify(self, prompt: str, timeout: float, max_turns: int) -> OracleResponse:
        return await self._complete(
            model=self.config.review_model,
            system_prompt=REVIEW_SYSTEM_PROMPT,
            prompt=prompt,
            max_tokens=800,
            timeout=timeout,
            attempts=max(1, min(self.config.max_retries, max_turns))
        )

    async def _complete(self, model: str, system_prompt: str, prompt: str,
                        max_tokens: int, timeout: float, attempts: int) -> OracleResponse:
        """
        Run a chat completion with retries, never raising.

        Retries stop early once the next attempt could not finish inside
        timeout; the caller enforces the hard limit.

        Returns:
            OracleResponse with the model's text or the last error
        """
        loop = asyncio.get_running_loop()
        give_up_at = loop.time() + timeout
        last_error = None
        client = self._client_factory()

        try:
            for attempt in range(attempts):
                remaining = give_up_at - loop.time()
                if remaining <= 0:
                    break

                try:
                    logger.debug(f"Calling {model} (attempt {attempt + 1}/{attempts})")
                    response = await client.chat.completions.create(
                        model=model,
                        messages=[
                            {"role": "system", "content": system_prompt},
                            {"role": "user", "content": prompt}
                        ],
                        max_tokens=max_tokens,
                        temperature=0.2,
                        timeout=remaining
                    )
                    if not response.choices:
                        return OracleResponse.failure("empty response")
                    content = response.choices[0].message.content or ""
                    return OracleResponse(text=content.strip(), succeeded=True)

                except (openai.AuthenticationError, openai.BadRequestError) as e:
                    # Retrying cannot fix these
                    logger.error(f"Oracle request rejected by {model}: {e}")
                    return OracleResponse.failure(f"request rejected: {e}")

                except openai.RateLimitError as e:
                    last_error = e
                    wait_time = min(2 ** attempt, 30)
                    logger.warning(f"Rate limit hit (attempt {attempt + 1}), waiting {wait_time}s...")

                except (openai.APITimeoutError, openai.APIConnectionError) as e:
                    last_error = e
                    wait_time = 1
                    logger.warning(f"{type(e).__name__} (attempt {attempt + 1}), retrying...")

                except openai.OpenAIError as e:
                    last_error = e
                    wait_time = 1
                    logger.warning(f"Oracle error (attempt {attempt + 1}): {e}")

                if attempt < attempts - 1 and give_up_at - loop.time() > wait_time:
                    await asyncio.sleep(wait_time)
                else:
                    break
        finally:
            await client.close()

        error_msg = f"Oracle call failed after {attempts} attempt(s)"
        if last_error:
            error_msg += f": {last_error}"
        logger.warning(error_msg)
        return OracleResponse.failure(error_msg)

    async def test_connection(self) -> bool:
        """
        Test connection to the oracle service.

        Returns:
            True if connection successful, False otherwise
        """
        response = await self.classify("Say 'test' and nothing else.", timeout=15, max_turns=1)
        success = response.succeeded and "test" in response.text.lower()
        if success:
            logger.info("Oracle connection test successful")
        else:
            logger.warning(f"Oracle connection test failed: {response.error or response.text!r}")
        return success
