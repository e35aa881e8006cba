"""Unified LLM client supporting Gemini, Anthropic, Ollama, and OpenAI backends."""

import asyncio
import logging

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from rapport.config import settings

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"

PROVIDERS = ("gemini", "anthropic", "ollama", "openai")
EMBEDDING_PROVIDERS = ("gemini", "ollama", "openai")


class LLMClient:
    """Async LLM client for chat generation and text embeddings."""

    def __init__(
        self,
        provider: str | None = None,
        api_key: str | None = None,
        embedding_provider: str | None = None,
    ):
        self.provider = provider or settings.llm_provider
        self.embedding_provider = (
            embedding_provider or settings.embedding_provider or self.provider
        )
        self.embedding_dim = settings.embedding_dim_for(self.embedding_provider)
        self._http_client = None

        if self.provider not in PROVIDERS:
            raise ValueError(f"Unknown LLM provider: {self.provider}")
        if self.embedding_provider not in EMBEDDING_PROVIDERS:
            raise ValueError(
                f"Provider {self.embedding_provider!r} cannot produce embeddings; "
                "set RAPPORT_EMBEDDING_PROVIDER to one of " + ", ".join(EMBEDDING_PROVIDERS)
            )

        for name in {self.provider, self.embedding_provider}:
            self._configure(name, api_key if name == self.provider else None)

    def _configure(self, provider: str, api_key: str | None) -> None:
        if provider == "anthropic":
            import anthropic
            self.anthropic_client = anthropic.AsyncAnthropic(
                api_key=api_key or settings.anthropic_api_key,
                timeout=settings.llm_timeout_seconds,
            )
        elif provider == "openai":
            import openai
            self.openai_client = openai.AsyncOpenAI(
                api_key=api_key or settings.openai_api_key,
                timeout=settings.llm_timeout_seconds,
            )
        elif provider == "gemini":
            self.gemini_api_key = api_key or settings.gemini_api_key
            if not self.gemini_api_key:
                raise ValueError("RAPPORT_GEMINI_API_KEY is required when using gemini provider")
        elif provider == "ollama":
            self.ollama_base_url = settings.ollama_base_url

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=settings.llm_timeout_seconds)
        return self._http_client

    async def generate(
        self,
        system: str,
        user_message: str,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float | None = None,
    ) -> str:
        """Single-turn generation."""
        return await self.chat(
            system,
            [{"role": "user", "content": user_message}],
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
        )

    async def chat(
        self,
        system: str,
        messages: list[dict],
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float | None = None,
    ) -> str:
        """Multi-turn chat with the LLM. Messages use "user" / "assistant" roles."""
        model = model or settings.resolved_coach_model
        if self.provider == "gemini":
            return await self._gemini_chat(system, messages, model, max_tokens, temperature)
        elif self.provider == "anthropic":
            return await self._anthropic_chat(system, messages, model, max_tokens, temperature)
        elif self.provider == "openai":
            return await self._openai_chat(system, messages, model, max_tokens, temperature)
        else:
            return await self._ollama_chat(system, messages, model, max_tokens, temperature)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def embed(self, text: str, model: str | None = None) -> list[float]:
        """Embed one text into a vector of the configured dimension."""
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        model = model or settings.resolved_embedding_model
        if self.embedding_provider == "gemini":
            vector = await self._gemini_embed(text, model)
        elif self.embedding_provider == "openai":
            vector = await self._openai_embed(text, model)
        else:
            vector = await self._ollama_embed(text, model)

        if len(vector) != self.embedding_dim:
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.embedding_dim}, got {len(vector)}"
            )
        return vector

    async def embed_many(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        """Embed several texts concurrently, preserving order."""
        return list(await asyncio.gather(*(self.embed(t, model) for t in texts)))

    # --- Gemini ---

    async def _gemini_request(self, payload: dict, model: str, action: str = "generateContent") -> dict:
        """Make a Gemini API request with rate-limit retry."""
        client = await self._get_http_client()
        url = f"{GEMINI_API_URL}/{model}:{action}?key={self.gemini_api_key}"

        for attempt in range(6):
            response = await client.post(url, json=payload)
            if response.status_code == 429:
                wait = min(2 ** attempt * 5, 60)  # 5s, 10s, 20s, 40s, 60s, 60s
                logger.info("Gemini rate limited, waiting %ds (attempt %d)...", wait, attempt + 1)
                await asyncio.sleep(wait)
                continue
            response.raise_for_status()
            return response.json()

        response.raise_for_status()  # raise on final 429
        return {}

    async def _gemini_chat(
        self, system: str, messages: list[dict], model: str, max_tokens: int, temperature: float | None
    ) -> str:
        contents = []
        for msg in messages:
            role = "user" if msg["role"] == "user" else "model"
            contents.append({"role": role, "parts": [{"text": msg["content"]}]})
        generation_config = {"maxOutputTokens": max_tokens}
        if temperature is not None:
            generation_config["temperature"] = temperature
        payload = {
            "system_instruction": {"parts": [{"text": system}]},
            "contents": contents,
            "generationConfig": generation_config,
        }
        data = await self._gemini_request(payload, model)
        return self._extract_gemini_text(data)

    async def _gemini_embed(self, text: str, model: str) -> list[float]:
        payload = {
            "model": f"models/{model}",
            "content": {"parts": [{"text": text}]},
            "outputDimensionality": self.embedding_dim,
        }
        data = await self._gemini_request(payload, model, action="embedContent")
        return data.get("embedding", {}).get("values", [])

    def _extract_gemini_text(self, data: dict) -> str:
        """Extract text from Gemini API response."""
        try:
            candidates = data.get("candidates", [])
            if not candidates:
                logger.error("Gemini returned no candidates: %s", data)
                return ""
            parts = candidates[0].get("content", {}).get("parts", [])
            return "".join(p.get("text", "") for p in parts)
        except (KeyError, IndexError) as e:
            logger.error("Failed to parse Gemini response: %s (%s)", e, data)
            return ""

    # --- Anthropic ---

    async def _anthropic_chat(
        self, system: str, messages: list[dict], model: str, max_tokens: int, temperature: float | None
    ) -> str:
        kwargs = {}
        if temperature is not None:
            kwargs["temperature"] = temperature
        response = await self.anthropic_client.messages.create(
            model=model,
            max_tokens=max_tokens,
            system=system,
            messages=messages,
            **kwargs,
        )
        return response.content[0].text

    # --- OpenAI ---

    async def _openai_chat(
        self, system: str, messages: list[dict], model: str, max_tokens: int, temperature: float | None
    ) -> str:
        kwargs = {}
        if temperature is not None:
            kwargs["temperature"] = temperature
        response = await self.openai_client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            messages=[{"role": "system", "content": system}, *messages],
            **kwargs,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def _openai_embed(self, text: str, model: str) -> list[float]:
        response = await self.openai_client.embeddings.create(model=model, input=text)
        return response.data[0].embedding if response.data else []

    # --- Ollama ---

    async def _ollama_chat(
        self, system: str, messages: list[dict], model: str, max_tokens: int, temperature: float | None
    ) -> str:
        client = await self._get_http_client()

        ollama_messages = [{"role": "system", "content": system}]
        for msg in messages:
            ollama_messages.append({
                "role": msg["role"],
                "content": msg["content"],
            })

        options = {"num_predict": max_tokens}
        if temperature is not None:
            options["temperature"] = temperature
        payload = {
            "model": model,
            "messages": ollama_messages,
            "stream": False,
            "options": options,
        }

        response = await client.post(
            f"{self.ollama_base_url}/api/chat",
            json=payload,
        )
        response.raise_for_status()
        data = response.json()
        return data["message"]["content"]

    async def _ollama_embed(self, text: str, model: str) -> list[float]:
        client = await self._get_http_client()
        response = await client.post(
            f"{self.ollama_base_url}/api/embed",
            json={"model": model, "input": text},
        )
        response.raise_for_status()
        embeddings = response.json().get("embeddings", [])
        return embeddings[0] if embeddings else []

    async def close(self):
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()


# Shared instance
_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    global _client
    if _client is None:
        _client = LLMClient()
    return _client
