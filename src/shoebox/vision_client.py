import base64
from typing import Dict, Optional

import requests

from shoebox.deep_analyzer import VisionTextProvider


class VisionClient(VisionTextProvider):
    """OpenAI-compatible multimodal chat client"""

    def __init__(self, api_key: str, base_url: str, model: str, timeout: float = 30,
                 max_tokens: int = 1024, temperature: float = 0.1, mime_type: str = "image/jpeg"):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.mime_type = mime_type
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_config(cls, cfg: Dict) -> Optional["VisionClient"]:
        """Build a client from the provider config section.

        Returns None when the API key, base URL or model is not configured.
        """
        provider = cfg.get("provider") or {}
        if not (provider.get("api_key") and provider.get("base_url") and provider.get("model")):
            return None
        return cls(
            api_key=provider["api_key"],
            base_url=provider["base_url"],
            model=provider["model"],
            timeout=provider.get("timeout", 30),
            max_tokens=provider.get("max_tokens", 1024),
            temperature=provider.get("temperature", 0.1),
        )

    def send(self, image: bytes, prompt: str) -> str:
        image_b64 = base64.b64encode(image or b"").decode("ascii")
        data = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{self.mime_type};base64,{image_b64}"},
                        },
                    ],
                }
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

        response = requests.post(
            f"{self.base_url}/chat/completions",
            headers=self.headers,
            json=data,
            timeout=self.timeout,
        )
        response.raise_for_status()

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Invalid response structure from vision API: {e}") from e
        if not isinstance(content, str):
            raise ValueError("Vision API returned no text content")
        return content
