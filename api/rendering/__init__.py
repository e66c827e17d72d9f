"""Rendering module for certificate rasters.

This module contains the presentation side of certificates:
- layout: pure field geometry (text fitting, paragraph wrapping)
- qr: verification QR code encoding
- compositor: painting fields onto the template
- optimizer: lossless PNG re-encoding

Publishing lives in services/.
"""

from rendering.compositor import (
    CompositionError,
    CompositionStage,
    FontSet,
    RasterArtifact,
    compose,
)
from rendering.layout import NameTooLongError, fit_text, wrap_text
from rendering.optimizer import OptimizeError, optimize
from rendering.qr import QrEncodeError, build_verification_url, encode_qr

__all__ = [
    "CompositionError",
    "CompositionStage",
    "FontSet",
    "NameTooLongError",
    "OptimizeError",
    "QrEncodeError",
    "RasterArtifact",
    "build_verification_url",
    "compose",
    "encode_qr",
    "fit_text",
    "optimize",
    "wrap_text",
]
