"""
Size-Budget Compressor

Re-encodes an oversized image until it fits the inference byte budget.
Quality is stepped down first; once the quality floor is reached the pixel
dimensions are shrunk instead. The smallest encoding achieved is returned
even when it is still over budget, the caller decides whether to reject it.

Images already within budget are returned untouched (ratio 1, quality 1).
"""

import asyncio
import io
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from src.core.config import settings
from src.core.exceptions import ImageCompressionError
from src.core.logging import get_logger

logger = get_logger(__name__)

# Shrink factor per attempt once quality is at its floor
DIMENSION_STEP = 0.75


@dataclass(frozen=True)
class CompressionOptions:
    max_dimension: int = 2048
    initial_quality: float = 0.9
    min_quality: float = 0.1
    quality_step: float = 0.15
    max_attempts: int = 8

    @classmethod
    def from_settings(cls) -> "CompressionOptions":
        return cls(
            max_dimension=settings.COMPRESSION_MAX_DIMENSION,
            initial_quality=settings.COMPRESSION_INITIAL_QUALITY,
            min_quality=settings.COMPRESSION_MIN_QUALITY,
            quality_step=settings.COMPRESSION_QUALITY_STEP,
            max_attempts=settings.COMPRESSION_MAX_ATTEMPTS,
        )


@dataclass(frozen=True)
class CompressionResult:
    data: bytes
    mime_type: str
    original_size: int
    compressed_size: int
    compression_ratio: float
    quality: float

    @property
    def is_identity(self) -> bool:
        return self.compression_ratio == 1 and self.quality == 1


def _output_format(mime_type: str) -> Tuple[str, str]:
    if mime_type == "image/webp":
        return "WEBP", "image/webp"
    # PNG has no quality knob, lossy re-encoding goes to JPEG
    return "JPEG", "image/jpeg"


def _prepare(image: Image.Image, fmt: str) -> Image.Image:
    if fmt == "JPEG" and image.mode != "RGB":
        if image.mode in ("RGBA", "LA", "P"):
            rgba = image.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[-1])
            return background
        return image.convert("RGB")
    return image


class ImageCompressor:
    """Pillow-based re-encoder bounded by CompressionOptions."""

    def __init__(self, options: Optional[CompressionOptions] = None):
        self.options = options or CompressionOptions()

    def compress(self, data: bytes, max_bytes: int, mime_type: str = "image/jpeg") -> CompressionResult:
        original_size = len(data)
        if original_size <= max_bytes:
            return CompressionResult(
                data=data,
                mime_type=mime_type,
                original_size=original_size,
                compressed_size=original_size,
                compression_ratio=1,
                quality=1,
            )

        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ImageCompressionError(f"Image could not be decoded for compression: {e}")

        fmt, out_mime = _output_format(mime_type)
        image = _prepare(image, fmt)
        opts = self.options
        if max(image.size) > opts.max_dimension:
            image.thumbnail((opts.max_dimension, opts.max_dimension), Image.Resampling.LANCZOS)

        quality = opts.initial_quality
        # The input itself is a candidate, a re-encode is only kept when smaller
        best: Tuple[bytes, float, str] = (data, 1, mime_type)

        for attempt in range(1, opts.max_attempts + 1):
            buffer = io.BytesIO()
            image.save(buffer, format=fmt, quality=max(1, int(round(quality * 100))), optimize=True)
            encoded = buffer.getvalue()

            if len(encoded) < len(best[0]):
                best = (encoded, quality, out_mime)

            logger.debug(
                "compression_attempt",
                attempt=attempt,
                quality=round(quality, 2),
                size=len(encoded),
                width=image.width,
                height=image.height
            )

            if len(encoded) <= max_bytes:
                break

            if quality > opts.min_quality + 1e-9:
                quality = max(opts.min_quality, round(quality - opts.quality_step, 4))
            else:
                new_size = (
                    max(1, int(image.width * DIMENSION_STEP)),
                    max(1, int(image.height * DIMENSION_STEP))
                )
                image = image.resize(new_size, Image.Resampling.LANCZOS)

        encoded, used_quality, used_mime = best
        result = CompressionResult(
            data=encoded,
            mime_type=used_mime,
            original_size=original_size,
            compressed_size=len(encoded),
            compression_ratio=round(len(encoded) / original_size, 4),
            quality=round(used_quality, 2),
        )

        log = logger.info if result.compressed_size <= max_bytes else logger.warning
        log(
            "image_compressed",
            original_size=original_size,
            compressed_size=result.compressed_size,
            ratio=result.compression_ratio,
            quality=result.quality,
            within_budget=result.compressed_size <= max_bytes
        )
        return result

    async def compress_async(self, data: bytes, max_bytes: int, mime_type: str = "image/jpeg") -> CompressionResult:
        """Run compress in a worker thread so encoding does not block the loop."""
        return await asyncio.to_thread(self.compress, data, max_bytes, mime_type)
