"""OpenAI Responses API client for vision analysis and image edits."""

import json
from dataclasses import dataclass

from openai import AsyncOpenAI

from nano_lens.services.analysis import VisionModelClient


@dataclass
class OpenAIVisionClient(VisionModelClient):
    """Vision client backed by OpenAI Responses API."""

    client: AsyncOpenAI

    @classmethod
    def create(cls, api_key: str) -> "OpenAIVisionClient":
        """Create an OpenAI vision client."""
        return cls(client=AsyncOpenAI(api_key=api_key))

    async def describe(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        image_data_urls: list[str],
        schema: dict[str, object],
        prompt: str,
    ) -> dict[str, object]:
        """Call OpenAI Responses API with structured outputs."""
        content: list[dict[str, object]] = [{"type": "input_text", "text": prompt}]
        content.extend(
            {"type": "input_image", "image_url": url} for url in image_data_urls
        )
        request_payload: dict[str, object] = {
            "model": model,
            "input": [{"role": "user", "content": content}],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "media_analysis",
                    "strict": True,
                    "schema": schema,
                }
            },
            "store": store,
        }
        if reasoning_effort:
            request_payload["reasoning"] = {"effort": reasoning_effort}

        response = await self.client.responses.create(**request_payload)
        output_text = response.output_text
        if not output_text:
            raise RuntimeError("OpenAI returned an empty response")
        return json.loads(output_text)

    async def edit(
        self, *, model: str, store: bool, image_data_url: str, prompt: str
    ) -> dict[str, object]:
        """Ask the image generation tool to edit the image."""
        response = await self.client.responses.create(
            model=model,
            input=[
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": prompt},
                        {"type": "input_image", "image_url": image_data_url},
                    ],
                }
            ],
            tools=[{"type": "image_generation"}],
            store=store,
        )
        image_base64 = None
        for item in response.output:
            if getattr(item, "type", None) == "image_generation_call":
                result = getattr(item, "result", None)
                if result:
                    image_base64 = result
                    break
        return {"image_base64": image_base64, "text": response.output_text or None}

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.client.close()
