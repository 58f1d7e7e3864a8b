import logging

import httpx

from selaro.transcript import to_llm_messages

logger = logging.getLogger(__name__)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-mini"


class LLMError(Exception):
    """The language model call failed or returned no text."""


class OpenAIChatClient:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.7,
        max_tokens: int = 200,
        timeout: float = 20.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client or httpx.AsyncClient(
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
        )

    async def close(self):
        await self._client.aclose()

    async def complete(self, system_prompt: str, turns: list[dict]) -> str:
        """One assistant reply for the system prompt plus the turn history."""
        try:
            resp = await self._client.post(
                OPENAI_URL,
                json={
                    "model": self.model,
                    "temperature": self.temperature,
                    "max_tokens": self.max_tokens,
                    "messages": to_llm_messages(system_prompt, turns),
                },
            )
            resp.raise_for_status()
            content = resp.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.error("chat completion failed: %s", e)
            raise LLMError(str(e)) from e

        if not content or not content.strip():
            raise LLMError("empty completion")
        return content.strip()
