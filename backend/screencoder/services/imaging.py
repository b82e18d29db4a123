"""
Screenshot preprocessing.

Vision models read dark-themed IDE captures poorly, so dark screenshots are
inverted to dark-on-light before they are encoded for the extraction request.
"""

import base64
import io
import logging
import os

from PIL import Image, ImageOps, ImageStat, UnidentifiedImageError

from screencoder.services.llm.models import ScreenshotData

logger = logging.getLogger(__name__)

DARK_THRESHOLD = 128


def is_dark(image: Image.Image) -> bool:
    """Mean luminance below the threshold."""
    grayscale = image.convert("L")
    return ImageStat.Stat(grayscale).mean[0] < DARK_THRESHOLD


def preprocess_screenshot(data: bytes) -> bytes:
    """
    Normalize a screenshot to PNG, inverting it when the background is dark.

    Returns the input unchanged if it cannot be decoded.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image = image.convert("RGB")
            if is_dark(image):
                logger.info("[Imaging] Dark screenshot detected, inverting colors")
                image = ImageOps.invert(image)
            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
            return buffer.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("[Imaging] Failed to preprocess screenshot, using original: %s", e)
        return data


def encode_screenshot(name: str, data: bytes) -> ScreenshotData:
    """Preprocess and base64-encode one screenshot."""
    processed = preprocess_screenshot(data)
    if processed is not data:
        name = os.path.splitext(name)[0] + ".png"
    return ScreenshotData(path=name, base64_data=base64.b64encode(processed).decode("ascii"))
