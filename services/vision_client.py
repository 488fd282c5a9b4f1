import asyncio
import base64
import logging
import os
from typing import Optional

import httpx
import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from schemas.enhancement_schemas import AIAnalysis
from services import image_processing
from services.deadline import with_deadline

logger = logging.getLogger(__name__)

ANALYSIS_MAX_TOKENS = 500
GENERATION_SIZE = "1024x1024"

ANALYSIS_PROMPT = """You are a professional food photographer and photo editor.
Analyze this food photo and answer with a single JSON object, no other text, using exactly this shape:
{
  "dish": "<name of the dish or food item>",
  "description": "<detailed visual description: ingredients, plating, colors, textures, background>",
  "notes": "<what should be improved in the photo>",
  "adjustments": {
    "brightness": <number 0.8 to 1.5, 1.0 = unchanged>,
    "contrast": <number 0.8 to 1.5, 1.0 = unchanged>,
    "saturation": <number 0.8 to 2.0, 1.0 = unchanged>,
    "warmth": <number -100 to 100, 0 = neutral>,
    "highlights": <number -100 to 100>,
    "shadows": <number -100 to 100>,
    "vibrance": <number 0 to 100>,
    "clarity": <number 0 to 100>,
    "exposure": <number -2 to 2 in stops>
  }
}
Choose adjustments that make the food look fresh, appetizing and true to life."""

GENERATION_PROMPT_TEMPLATE = (
    "Professional food photography of {dish}. {description} "
    "Shot by a food photographer for a restaurant menu: natural soft lighting, appetizing and "
    "vibrant but realistic colors, sharp focus on the food, shallow depth of field, clean "
    "uncluttered background, high resolution."
)


class AIServiceError(Exception):
    """Base class for failures of the external AI backend."""
    pass

class AnalysisFailed(AIServiceError):
    pass

class AnalysisMalformed(AIServiceError):
    pass

class GenerationFailed(AIServiceError):
    pass

class DownloadFailed(GenerationFailed):
    pass


def build_generation_prompt(analysis: AIAnalysis, custom_prompt: Optional[str] = None) -> str:
    prompt = GENERATION_PROMPT_TEMPLATE.format(
        dish=analysis.dish or "a food dish",
        description=analysis.description.strip(),
    )
    if analysis.notes:
        prompt += f" Improve on the original photo: {analysis.notes.strip()}"
    if custom_prompt:
        prompt += f" {custom_prompt.strip()}"
    return prompt


def parse_analysis(content: Optional[str]) -> AIAnalysis:
    """Single decode step for the analysis response; any shape mismatch is AnalysisMalformed."""
    if not content or not content.strip():
        raise AnalysisMalformed("AI analysis returned an empty response")
    try:
        return AIAnalysis.model_validate_json(content)
    except ValidationError as e:
        raise AnalysisMalformed(f"AI analysis returned invalid JSON: {e.error_count()} error(s), first: {e.errors()[0]['msg']}")


class VisionClient:
    """
    Talks to the OpenAI chat (vision) and image generation endpoints.

    Every call runs under its own deadline; failures are reported as AIServiceError
    subclasses so the caller can decide how to proceed.
    """

    def __init__(
        self,
        openai_client: AsyncOpenAI,
        analysis_model: str = "gpt-4o",
        image_model: str = "dall-e-3",
        analysis_timeout: float = 30.0,
        generation_timeout: float = 60.0,
        download_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.openai_client = openai_client
        self.analysis_model = analysis_model
        self.image_model = image_model
        self.analysis_timeout = analysis_timeout
        self.generation_timeout = generation_timeout
        self.download_timeout = download_timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings) -> Optional["VisionClient"]:
        """Returns None when no API key is configured, which disables the AI stage."""
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY not set; AI enhancement disabled, using filter pipeline only.")
            return None
        return cls(
            AsyncOpenAI(api_key=settings.openai_api_key, max_retries=0),
            analysis_model=settings.analysis_model,
            image_model=settings.image_model,
            analysis_timeout=settings.analysis_timeout,
            generation_timeout=settings.generation_timeout,
            download_timeout=settings.download_timeout,
        )

    async def analyze(self, image_path: str, custom_prompt: Optional[str] = None) -> AIAnalysis:
        try:
            image_format = image_processing.detect_format(image_path)
            image_bytes = await asyncio.to_thread(_read_bytes, image_path)
        except (image_processing.ImageProcessingError, OSError) as e:
            raise AnalysisFailed(f"Cannot send image to analysis: {e}") from e

        prompt = ANALYSIS_PROMPT
        if custom_prompt:
            prompt += f"\nAdditional instructions from the user: {custom_prompt.strip()}"

        encoded = base64.b64encode(image_bytes).decode("ascii")
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:image/{image_format};base64,{encoded}", "detail": "high"}},
            ],
        }]

        logger.info(f"Requesting AI analysis of {os.path.basename(image_path)} with model {self.analysis_model}")
        try:
            response = await with_deadline(
                self.openai_client.chat.completions.create(
                    model=self.analysis_model,
                    messages=messages,
                    max_tokens=ANALYSIS_MAX_TOKENS,
                    response_format={"type": "json_object"},
                ),
                self.analysis_timeout,
                AnalysisFailed,
                "AI analysis",
            )
        except openai.OpenAIError as e:
            raise AnalysisFailed(f"AI analysis request failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise AnalysisMalformed("AI analysis response has no message content") from e

        analysis = parse_analysis(content)
        logger.info(f"AI analysis identified '{analysis.dish}'")
        return analysis

    async def generate(self, analysis: AIAnalysis, output_path: str, custom_prompt: Optional[str] = None) -> str:
        """Generates a new photo from the analysis, stores it at `output_path` and returns the prompt used."""
        prompt = build_generation_prompt(analysis, custom_prompt)
        options = {}
        if self.image_model == "dall-e-3":
            options = {"quality": "hd", "style": "natural"}

        logger.info(f"Requesting image generation with model {self.image_model}")
        try:
            response = await with_deadline(
                self.openai_client.images.generate(
                    model=self.image_model,
                    prompt=prompt,
                    size=GENERATION_SIZE,
                    n=1,
                    **options,
                ),
                self.generation_timeout,
                GenerationFailed,
                "Image generation",
            )
        except openai.OpenAIError as e:
            raise GenerationFailed(f"Image generation request failed: {e}") from e

        try:
            item = response.data[0]
        except (AttributeError, IndexError, TypeError) as e:
            raise GenerationFailed("Image generation returned no images") from e

        b64_data = getattr(item, "b64_json", None)
        url = getattr(item, "url", None)
        if b64_data:
            try:
                image_bytes = base64.b64decode(b64_data)
            except ValueError as e:
                raise GenerationFailed(f"Image generation returned invalid base64 data: {e}") from e
        elif url:
            image_bytes = await self._download(url)
        else:
            raise GenerationFailed("Image generation returned neither b64_json nor url")

        try:
            await asyncio.to_thread(image_processing.save_image_bytes, image_bytes, output_path)
        except image_processing.ImageProcessingError as e:
            raise DownloadFailed(f"Generated image could not be stored: {e}") from e
        return prompt

    async def _download(self, url: str) -> bytes:
        """Fetches the whole body into memory; nothing touches the disk on failure."""
        try:
            async with httpx.AsyncClient(timeout=self.download_timeout, transport=self._transport) as http_client:
                response = await with_deadline(
                    http_client.get(url),
                    self.download_timeout,
                    DownloadFailed,
                    "Generated image download",
                )
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise DownloadFailed(f"Generated image download failed: {e}") from e


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()
