from groq import AsyncGroq

from tutor.config import settings


class GroqClient:
    """Async wrapper around the official Groq SDK.

    Usage::

        groq = GroqClient()                           # DEFAULT_MODEL from env
        text = await groq.chat(messages)

        summarizer = groq.with_model(settings.summary_model)
        text = await summarizer.chat(messages, max_tokens=2000)

    ``with_model()`` reuses the underlying ``AsyncGroq`` HTTP session; see
    ``tutor.deps.get_groq_client``.
    """

    def __init__(self, model: str | None = None, api_key: str | None = None) -> None:
        self._model = model or settings.default_model
        self._client = AsyncGroq(api_key=api_key or settings.groq_api_key)

    def with_model(self, model_name: str) -> "GroqClient":
        """Return a new GroqClient bound to *model_name* sharing the HTTP session."""
        clone = GroqClient.__new__(GroqClient)
        clone._model = model_name
        clone._client = self._client
        return clone

    async def chat(
        self,
        messages: list[dict],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Plain-text chat completion. Returns the content string ("" if none)."""
        kwargs: dict = {
            "model": model or self._model,
            "messages": messages,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        resp = await self._client.chat.completions.create(**kwargs)
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""
