"""
Compression Service - Single Responsibility: shrink images before upload.

Uses Pillow. Work runs in a thread pool so the event loop is never blocked.
"""
from concurrent.futures import Executor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import asyncio
import io
import logging

from PIL import Image, UnidentifiedImageError

from ..errors import CompressionFailure
from ..models import CompressionPreset, SourceFile

logger = logging.getLogger(__name__)

JPEG_EXTENSIONS = (".jpg", ".jpeg")


@dataclass(frozen=True)
class CompressionResult:
    data: bytes = field(repr=False)
    name: str
    quality: int
    width: int
    height: int
    content_type: str = "image/jpeg"

    @property
    def size(self) -> int:
        return len(self.data)


def compressed_name(name: str) -> str:
    """
    Output name for a compressed image.

    JPEG originals keep their name. Other formats keep their extension in the
    stem so ``site.png`` and ``site.webp`` map to different names.
    """
    path = Path(name)
    suffix = path.suffix.lower()
    if suffix in JPEG_EXTENSIONS:
        return path.name
    if not suffix:
        return f"{path.name}.jpg"
    return f"{path.stem}_{suffix.lstrip('.')}.jpg"


def compression_percentage(original_size: int, compressed_size: int) -> int:
    """Saved percentage, rounded. 0 for empty originals."""
    if original_size == 0:
        return 0
    return round((original_size - compressed_size) / original_size * 100)


class CompressionService:
    """
    Compresses images to JPEG within a preset's size guideline.

    Quality starts at the preset value and drops in steps while the output
    is too large; once the floor is reached the image is scaled down instead.
    """

    MIN_QUALITY = 10
    QUALITY_STEP = 10
    SCALE_STEP = 0.8
    MAX_ITERATIONS = 10

    def __init__(self, max_dimension: int = 4096, executor: Optional[Executor] = None):
        self._max_dimension = max_dimension
        self._executor = executor

    async def compress(
        self,
        source: SourceFile,
        payload: bytes,
        preset: CompressionPreset,
    ) -> CompressionResult:
        """Compress off the event loop. Raises CompressionFailure."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, self.compress_bytes, source.name, payload, preset
        )

    def compress_bytes(self, name: str, payload: bytes, preset: CompressionPreset) -> CompressionResult:
        try:
            with Image.open(io.BytesIO(payload)) as img:
                img.load()
                exif = img.info.get("exif")
                rgb = self._to_rgb(img)
                return self._encode_within(name, rgb, preset, exif)
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            raise CompressionFailure(f"Failed to compress {name}: {e}") from e

    def _encode_within(
        self,
        name: str,
        img: Image.Image,
        preset: CompressionPreset,
        exif: Optional[bytes],
    ) -> CompressionResult:
        width, height = img.size
        quality = preset.jpeg_quality
        scale = min(1.0, self._max_dimension / max(width, height))
        target = preset.max_size_bytes

        data = b""
        frame = img
        for iteration in range(self.MAX_ITERATIONS):
            frame = self._scaled(img, scale)
            data = self._encode(frame, quality, exif)
            logger.debug(
                f"{name}: pass {iteration + 1} quality={quality} "
                f"size={frame.size[0]}x{frame.size[1]} -> {len(data)} bytes"
            )
            if len(data) <= target:
                break
            if quality - self.QUALITY_STEP >= self.MIN_QUALITY:
                quality -= self.QUALITY_STEP
            else:
                scale *= self.SCALE_STEP
        else:
            logger.debug(f"{name}: still above {target} bytes after {self.MAX_ITERATIONS} passes")

        return CompressionResult(
            data=data,
            name=compressed_name(name),
            quality=quality,
            width=frame.size[0],
            height=frame.size[1],
        )

    @staticmethod
    def _scaled(img: Image.Image, scale: float) -> Image.Image:
        if scale >= 1.0:
            return img
        width, height = img.size
        size = (max(1, int(width * scale)), max(1, int(height * scale)))
        return img.resize(size, Image.Resampling.LANCZOS)

    @staticmethod
    def _encode(img: Image.Image, quality: int, exif: Optional[bytes]) -> bytes:
        output = io.BytesIO()
        options = {"format": "JPEG", "quality": quality, "optimize": True}
        if exif:
            options["exif"] = exif
        img.save(output, **options)
        return output.getvalue()

    @staticmethod
    def _to_rgb(img: Image.Image) -> Image.Image:
        # Flatten transparency onto white
        if img.mode == "P":
            img = img.convert("RGBA")
        if img.mode in ("RGBA", "LA"):
            background = Image.new("RGB", img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[-1])
            return background
        if img.mode != "RGB":
            return img.convert("RGB")
        return img
