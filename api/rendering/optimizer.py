"""Lossless PNG re-encoding for composed certificates."""

from io import BytesIO

from PIL import Image

from core.logger import get_logger
from rendering.compositor import PNG_MIME_TYPE, RasterArtifact

logger = get_logger(__name__)

PNG_COMPRESS_LEVEL = 9


class OptimizeError(Exception):
    """Raised when a raster cannot be decoded or re-encoded."""


def optimize(raster: RasterArtifact) -> RasterArtifact:
    """Re-encode a raster at maximum PNG compression.

    Pixels and dimensions are untouched (no palette reduction, same mode).
    The result is never larger than the input: if re-encoding does not help,
    the input bytes are returned as they are.
    """
    try:
        with Image.open(BytesIO(raster.data)) as image:
            image.load()
            if image.size != (raster.width, raster.height):
                raise OptimizeError(
                    f"Raster is {image.width}x{image.height}, "
                    f"expected {raster.width}x{raster.height}"
                )
            buffer = BytesIO()
            # optimize=True makes the encoder pick the best filter per row
            image.save(
                buffer,
                format="PNG",
                compress_level=PNG_COMPRESS_LEVEL,
                optimize=True,
            )
    except OptimizeError:
        raise
    except Exception as e:
        raise OptimizeError(f"PNG re-encoding failed: {e}") from e

    data = buffer.getvalue()
    if len(data) >= raster.size_bytes:
        logger.debug("certificate.optimize.skipped", size_bytes=raster.size_bytes)
        return raster

    logger.debug(
        "certificate.optimized",
        original_bytes=raster.size_bytes,
        optimized_bytes=len(data),
    )
    return RasterArtifact(
        data=data, width=raster.width, height=raster.height, mime_type=PNG_MIME_TYPE
    )
