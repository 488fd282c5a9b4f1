import asyncio
import logging
import os
import uuid
from io import BytesIO
from typing import Any, Dict, Optional, Tuple

import cv2
import numpy as np
from PIL import Image, ImageEnhance, ImageFilter, ImageOps, UnidentifiedImageError

from schemas.enhancement_schemas import EnhancementLevel, EnhancementParameters
from services.deadline import with_deadline

logger = logging.getLogger(__name__)

# Pillow format name -> short name used in MIME types and data URLs
SUPPORTED_FORMATS: Dict[str, str] = {"JPEG": "jpeg", "PNG": "png", "WEBP": "webp"}

OUTPUT_JPEG_QUALITY = 95
THUMBNAIL_JPEG_QUALITY = 80
THUMBNAIL_SIZE = (300, 300)
DEFAULT_FILTER_TIMEOUT_SECONDS = 30.0

# Warmth shifts the red and blue channels by up to 20% in opposite directions
WARMTH_CHANNEL_SHIFT = 0.2
# Unsharp mask strength; the radius comes from the `sharpen` parameter
SHARPEN_PERCENT = 150
SHARPEN_THRESHOLD = 2
# Percentage of darkest/lightest pixels ignored by automatic level normalization
AUTO_LEVELS_CUTOFF = 1

ENHANCEMENT_PRESETS: Dict[EnhancementLevel, Dict[str, Any]] = {
    EnhancementLevel.LOW: {"brightness": 1.05, "contrast": 1.1, "saturation": 1.1, "sharpen": 0.5},
    EnhancementLevel.MEDIUM: {"brightness": 1.1, "contrast": 1.2, "saturation": 1.3, "sharpen": 1.0},
    EnhancementLevel.HIGH: {"brightness": 1.15, "contrast": 1.3, "saturation": 1.5, "sharpen": 1.5},
    EnhancementLevel.AUTO: {"brightness": 1.1, "contrast": 1.2, "saturation": 1.4, "sharpen": 1.0, "normalize": True},
}

# Used when neither a level nor AI-derived parameters are available
FALLBACK_PARAMETERS: Dict[str, Any] = {"brightness": 1.15, "contrast": 1.25, "saturation": 1.35, "sharpen": 1.0}


class ImageProcessingError(Exception):
    """Custom exception for image processing errors."""
    pass

class InputNotFound(ImageProcessingError):
    pass

class UnsupportedFormat(ImageProcessingError):
    pass

class FilterTimeout(ImageProcessingError):
    pass

class OutputWriteFailed(ImageProcessingError):
    pass


def resolve_parameters(
    level: Optional[EnhancementLevel] = None,
    overrides: Optional[Dict[str, Optional[float]]] = None,
) -> EnhancementParameters:
    """Preset for `level` (or FALLBACK_PARAMETERS) with explicit overrides applied on top, clamped."""
    base = ENHANCEMENT_PRESETS[level] if level else FALLBACK_PARAMETERS
    return EnhancementParameters(**base).with_overrides(**(overrides or {}))


def detect_format(image_path: str) -> str:
    """Returns 'jpeg', 'png' or 'webp' based on the file's content, not its extension."""
    if not os.path.exists(image_path):
        raise InputNotFound(f"Image not found at {image_path}")
    try:
        with Image.open(image_path) as img:
            pil_format = img.format
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise UnsupportedFormat(f"Could not identify image format of {os.path.basename(image_path)}: {e}")
    except OSError as e:
        raise ImageProcessingError(f"Error reading image {image_path}: {e}")
    if pil_format not in SUPPORTED_FORMATS:
        raise UnsupportedFormat(
            f"Unsupported image format '{pil_format}'. Supported formats: {', '.join(SUPPORTED_FORMATS.values())}"
        )
    return SUPPORTED_FORMATS[pil_format]


def load_image_pil(image_path: str) -> Image.Image:
    """
    Loads a supported image, applies its EXIF orientation and returns it as RGB.
    Transparent areas are flattened onto white.
    """
    detect_format(image_path)
    try:
        with Image.open(image_path) as img:
            img.load()
            img = ImageOps.exif_transpose(img)
    except OSError as e:
        raise UnsupportedFormat(f"Could not decode image {os.path.basename(image_path)}: {e}")

    if img.mode == 'P': # Palette mode
        img = img.convert('RGBA' if 'transparency' in img.info else 'RGB')
    if img.mode in ('RGBA', 'LA'):
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.getchannel('A'))
        return background
    if img.mode != 'RGB':
        img = img.convert('RGB')
    return img


def apply_modulation(pil_img: Image.Image, brightness: float, saturation: float) -> Image.Image:
    """Brightness and saturation multipliers via Pillow's ImageEnhance."""
    if brightness != 1.0:
        pil_img = ImageEnhance.Brightness(pil_img).enhance(brightness)
    if saturation != 1.0:
        pil_img = ImageEnhance.Color(pil_img).enhance(saturation)
    return pil_img


def apply_warmth(pil_img: Image.Image, warmth: float) -> Image.Image:
    """Positive warmth boosts red and cuts blue, negative does the opposite."""
    if warmth == 0:
        return pil_img
    factor = (warmth / 100.0) * WARMTH_CHANNEL_SHIFT
    matrix = np.array(
        [[1.0 + factor, 0.0, 0.0],
         [0.0, 1.0, 0.0],
         [0.0, 0.0, 1.0 - factor]],
        dtype=np.float32,
    )
    return Image.fromarray(cv2.transform(np.array(pil_img), matrix))


def apply_auto_levels(pil_img: Image.Image) -> Image.Image:
    return ImageOps.autocontrast(pil_img, cutoff=AUTO_LEVELS_CUTOFF)


def contrast_lut(contrast: float) -> np.ndarray:
    # offset keeps mid-grey (128) fixed
    offset = -(128 * (contrast - 1))
    values = np.arange(256, dtype=np.float32) * contrast + offset
    return np.clip(np.round(values), 0, 255).astype(np.uint8)


def apply_linear_contrast(pil_img: Image.Image, contrast: float) -> Image.Image:
    if contrast == 1.0:
        return pil_img
    return Image.fromarray(cv2.LUT(np.array(pil_img), contrast_lut(contrast)))


def exposure_lut(exposure: float) -> np.ndarray:
    gamma = 2 ** (-exposure)
    values = np.power(np.arange(256, dtype=np.float32) / 255.0, gamma) * 255.0
    return np.clip(np.round(values), 0, 255).astype(np.uint8)


def apply_exposure(pil_img: Image.Image, exposure: float) -> Image.Image:
    if exposure == 0:
        return pil_img
    return Image.fromarray(cv2.LUT(np.array(pil_img), exposure_lut(exposure)))


def apply_sharpen(pil_img: Image.Image, sigma: float) -> Image.Image:
    if sigma <= 0:
        return pil_img
    return pil_img.filter(ImageFilter.UnsharpMask(radius=sigma, percent=SHARPEN_PERCENT, threshold=SHARPEN_THRESHOLD))


def encode_jpeg(pil_img: Image.Image, quality: int = OUTPUT_JPEG_QUALITY) -> bytes:
    buffer = BytesIO()
    pil_img.save(buffer, format="JPEG", quality=quality, subsampling=0, optimize=True)
    return buffer.getvalue()


def render_enhanced_image(image_path: str, params: EnhancementParameters) -> Tuple[bytes, Tuple[int, int]]:
    """
    Runs the full pipeline in memory and returns the encoded JPEG and its (width, height).

    Order: orientation, brightness/saturation, warmth, auto levels (optional),
    linear contrast, exposure, sharpen, encode.
    """
    pil_img = load_image_pil(image_path)
    try:
        pil_img = apply_modulation(pil_img, params.brightness, params.saturation)
        pil_img = apply_warmth(pil_img, params.warmth)
        if params.normalize:
            pil_img = apply_auto_levels(pil_img)
        pil_img = apply_linear_contrast(pil_img, params.contrast)
        pil_img = apply_exposure(pil_img, params.exposure)
        pil_img = apply_sharpen(pil_img, params.sharpen)
        return encode_jpeg(pil_img), pil_img.size
    except (cv2.error, ValueError, OSError) as e:
        raise ImageProcessingError(f"Error applying enhancements to {os.path.basename(image_path)}: {e}")


def verify_output(output_path: str) -> None:
    if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
        raise OutputWriteFailed(f"Output file {output_path} is missing or empty")


def write_output(output_path: str, data: bytes) -> None:
    """Writes `data` to a temporary sibling file and renames it into place."""
    temp_path = f"{output_path}.{uuid.uuid4().hex}.part"
    try:
        os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
        with open(temp_path, "wb") as f:
            f.write(data)
        os.replace(temp_path, output_path)
    except OSError as e:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise OutputWriteFailed(f"Could not write output file {output_path}: {e}")
    verify_output(output_path)


def save_image_bytes(data: bytes, output_path: str) -> Tuple[int, int]:
    """Decodes image bytes from any source and stores them re-encoded as JPEG."""
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            pil_img = img.convert('RGB')
    except (UnidentifiedImageError, OSError) as e:
        raise UnsupportedFormat(f"Received data is not a decodable image: {e}")
    write_output(output_path, encode_jpeg(pil_img))
    return pil_img.size


def read_dimensions(image_path: str) -> Tuple[int, int]:
    with Image.open(image_path) as img:
        return img.size


def create_thumbnail(image_path: str, output_path: str, size: Tuple[int, int] = THUMBNAIL_SIZE) -> str:
    pil_img = load_image_pil(image_path)
    thumbnail = ImageOps.fit(pil_img, size, method=Image.Resampling.LANCZOS)
    write_output(output_path, encode_jpeg(thumbnail, quality=THUMBNAIL_JPEG_QUALITY))
    return output_path


async def run_filter_pipeline(
    input_path: str,
    output_path: str,
    params: EnhancementParameters,
    timeout: float = DEFAULT_FILTER_TIMEOUT_SECONDS,
) -> Tuple[int, int]:
    """
    Enhances `input_path` into `output_path` and returns the output (width, height).

    The pipeline runs in a worker thread under `timeout`; on expiry FilterTimeout is
    raised and the late result, if any, is never written.
    """
    logger.info(f"Running filter pipeline on {os.path.basename(input_path)} with {params.model_dump()}")
    data, dimensions = await with_deadline(
        asyncio.to_thread(render_enhanced_image, input_path, params),
        timeout,
        FilterTimeout,
        "Filter pipeline",
    )
    await asyncio.to_thread(write_output, output_path, data)
    return dimensions
