"""LLM service clients — Google AI Studio, OpenRouter and Anthropic behind one interface.

Each agent gets an LLMClient built from its [agents.<kind>] settings. Every call
may be slow or fail; failures surface as ServiceError.
"""

import base64
import json
import logging
import os
from typing import Any, Optional, Sequence

import httpx

logger = logging.getLogger("thoughtgraph.llm")

SERVICES = ("google", "openrouter", "anthropic")

DEFAULT_BASE_URLS = {
    "google": "https://generativelanguage.googleapis.com/v1beta",
    "openrouter": "https://openrouter.ai/api/v1",
}

DEFAULT_KEY_ENV = {
    "google": "GOOGLE_AI_STUDIO_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "deepgram": "DEEPGRAM_API_KEY",
    "youtube": "YOUTUBE_API_KEY",
}


class ServiceError(Exception):
    """An external service call failed or returned something unusable."""


def parse_json_response(text: str) -> Any:
    """Parse a model reply as JSON, tolerating markdown code fences."""
    response_text = text.strip()
    if response_text.startswith("```"):
        response_text = response_text.split("\n", 1)[1] if "\n" in response_text else ""
        if response_text.rstrip().endswith("```"):
            response_text = response_text.rstrip()[:-3]
        response_text = response_text.strip()
    try:
        return json.loads(response_text)
    except json.JSONDecodeError as e:
        raise ServiceError(f"Model returned invalid JSON: {e}") from e


def api_key(service_cfg: dict, service: str) -> str:
    env_var = service_cfg.get("api_key_env", DEFAULT_KEY_ENV.get(service, ""))
    key = os.getenv(env_var, "") if env_var else ""
    if not key:
        raise ServiceError(f"{env_var or service} not set in environment")
    return key


class LLMClient:
    """Text/vision completion against one configured service and model."""

    def __init__(
        self,
        service: str,
        model: str,
        service_cfg: Optional[dict] = None,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        http: Optional[httpx.AsyncClient] = None,
    ):
        if service not in SERVICES:
            raise ServiceError(f"Unsupported LLM service: {service}")
        self.service = service
        self.model = model
        self.service_cfg = service_cfg or {}
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._http = http
        self.timeout = float(self.service_cfg.get("request_timeout_seconds", 120))

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        images: Sequence[bytes] = (),
        json_mode: bool = False,
    ) -> str:
        logger.debug(f"Calling {self.service}/{self.model} ({len(prompt)} chars, {len(images)} images)")
        try:
            if self.service == "anthropic":
                return await self._anthropic(prompt, system, images)
            if self.service == "google":
                return await self._google(prompt, system, images, json_mode)
            return await self._openrouter(prompt, system, images, json_mode)
        except httpx.HTTPStatusError as e:
            raise ServiceError(
                f"{self.service} returned HTTP {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise ServiceError(f"{self.service} request failed: {e}") from e

    async def complete_json(
        self,
        prompt: str,
        system: Optional[str] = None,
        images: Sequence[bytes] = (),
    ) -> Any:
        text = await self.complete(prompt, system=system, images=images, json_mode=True)
        return parse_json_response(text)

    async def _post(self, url: str, **kwargs) -> dict:
        if self._http is not None:
            response = await self._http.post(url, timeout=self.timeout, **kwargs)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(url, timeout=self.timeout, **kwargs)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise ServiceError(f"{self.service} returned a non-JSON body: {response.text[:200]}") from e

    async def _google(self, prompt, system, images, json_mode) -> str:
        base = self.service_cfg.get("base_url", DEFAULT_BASE_URLS["google"])
        parts = [{"text": prompt}]
        for image in images:
            parts.append({
                "inline_data": {
                    "mime_type": "image/jpeg",
                    "data": base64.b64encode(image).decode("ascii"),
                }
            })
        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
            },
        }
        if json_mode:
            body["generationConfig"]["responseMimeType"] = "application/json"
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}

        data = await self._post(
            f"{base}/models/{self.model}:generateContent",
            params={"key": api_key(self.service_cfg, "google")},
            json=body,
        )
        try:
            return "".join(p.get("text", "") for p in data["candidates"][0]["content"]["parts"])
        except (KeyError, IndexError, TypeError) as e:
            raise ServiceError(f"Unexpected Gemini response shape: {str(data)[:200]}") from e

    async def _openrouter(self, prompt, system, images, json_mode) -> str:
        base = self.service_cfg.get("base_url", DEFAULT_BASE_URLS["openrouter"])
        content: Any = prompt
        if images:
            content = [{"type": "text", "text": prompt}] + [
                {
                    "type": "image_url",
                    "image_url": {"url": "data:image/jpeg;base64," + base64.b64encode(img).decode("ascii")},
                }
                for img in images
            ]
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": content})
        body = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        data = await self._post(
            f"{base}/chat/completions",
            headers={"Authorization": f"Bearer {api_key(self.service_cfg, 'openrouter')}"},
            json=body,
        )
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ServiceError(f"Unexpected OpenRouter response shape: {str(data)[:200]}") from e

    async def _anthropic(self, prompt, system, images) -> str:
        import anthropic

        client = anthropic.AsyncAnthropic(
            api_key=api_key(self.service_cfg, "anthropic"),
            timeout=self.timeout,
        )
        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": "image/jpeg",
                    "data": base64.b64encode(img).decode("ascii"),
                },
            }
            for img in images
        ]
        content.append({"type": "text", "text": prompt})
        kwargs = {}
        if system:
            kwargs["system"] = system
        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": content}],
                **kwargs,
            )
        except anthropic.APIError as e:
            raise ServiceError(f"anthropic request failed: {e}") from e
        return response.content[0].text


def client_for(config: dict, settings: dict, prefix: str = "", http: Optional[httpx.AsyncClient] = None) -> LLMClient:
    """Build a client from an agent's settings.

    `prefix` selects an alternate pair of keys, e.g. "context_" reads
    context_service / context_model.
    """
    service = settings.get(f"{prefix}service", "google")
    return LLMClient(
        service=service,
        model=settings.get(f"{prefix}model", "gemini-1.5-pro"),
        service_cfg=config.get("services", {}).get(service, {}),
        temperature=float(settings.get("temperature", 0.2)),
        max_tokens=int(settings.get("max_tokens", 4096)),
        http=http,
    )
