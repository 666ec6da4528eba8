"""Image-generation payloads (Imagen, AIML Flux).

Image providers do not take a conversation: the prompt is the most recent
non-empty user message.
"""

from __future__ import annotations

import math
import re
from typing import TYPE_CHECKING, Any

from relay.builders.base import PayloadBuilder, text_of
from relay.errors import PayloadError
from relay.models import ModelType, ProviderPayload

if TYPE_CHECKING:
    from relay.models import RequestContext

DEFAULT_IMAGE_SIZE = "1024x1024"
DEFAULT_IMAGE_COUNT = 1
FLUX_DEFAULT_OUTPUT_FORMAT = "jpeg"

_SIZE_RE = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*$")
_IMAGEN_ASPECT_RATIOS = frozenset({"1:1", "3:4", "4:3", "9:16", "16:9"})


def aspect_ratio(size: str) -> str:
    """Reduce ``"WxH"`` to an Imagen aspect ratio, defaulting to square."""
    m = _SIZE_RE.match(size)
    if not m:
        return "1:1"
    w, h = int(m.group(1)), int(m.group(2))
    if not w or not h:
        return "1:1"
    g = math.gcd(w, h)
    ratio = f"{w // g}:{h // g}"
    return ratio if ratio in _IMAGEN_ASPECT_RATIOS else "1:1"


class ImagePayloadBuilder(PayloadBuilder):
    async def prompt(self, context: RequestContext) -> str:
        for message in reversed(context.history):
            if message.is_from_ai or message.tool_result is not None:
                continue
            text = text_of(await self.resolve_parts(message)).strip()
            if text:
                return text
        raise PayloadError(
            "No user prompt found for image generation",
            hint="Image models need at least one non-empty user message.",
        )


class ImagenPayloadBuilder(ImagePayloadBuilder):
    model_type = ModelType.IMAGEN

    async def build(self, context: RequestContext) -> ProviderPayload:
        size = context.overrides.image_size or DEFAULT_IMAGE_SIZE
        count = context.overrides.num_images or DEFAULT_IMAGE_COUNT
        body: dict[str, Any] = {
            "model": context.model.model_code,
            "stream": False,
            "instances": [{"prompt": await self.prompt(context)}],
            "parameters": {"sampleCount": count, "aspectRatio": aspect_ratio(size)},
        }
        return ProviderPayload(self.model_type, body)


class AimlFluxPayloadBuilder(ImagePayloadBuilder):
    model_type = ModelType.AIMLFLUX
    supported_parameters = frozenset(
        {
            "prompt",
            "image_size",
            "num_images",
            "output_format",
            "enable_safety_checker",
            "safety_tolerance",
            "seed",
        }
    )

    async def build(self, context: RequestContext) -> ProviderPayload:
        overrides = context.overrides
        size = overrides.image_size or DEFAULT_IMAGE_SIZE
        m = _SIZE_RE.match(size)
        # Named presets such as "square_hd" pass through unchanged.
        image_size: Any = {"width": int(m.group(1)), "height": int(m.group(2))} if m else size
        params: dict[str, Any] = {
            "prompt": await self.prompt(context),
            "image_size": image_size,
            "num_images": overrides.num_images or DEFAULT_IMAGE_COUNT,
            "output_format": FLUX_DEFAULT_OUTPUT_FORMAT,
        }
        if overrides.safety_tolerance is not None:
            params["safety_tolerance"] = str(overrides.safety_tolerance)
        body: dict[str, Any] = {"model": context.model.model_code, "stream": False}
        body.update(self.filter_parameters(params))
        return ProviderPayload(self.model_type, body)
