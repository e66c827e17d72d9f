"""Tests for rendering.optimizer."""

import random
from io import BytesIO

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from PIL import Image

from rendering.compositor import RasterArtifact
from rendering.optimizer import OptimizeError, optimize

pytestmark = pytest.mark.unit


def make_raster(image: Image.Image, compress_level: int = 0) -> RasterArtifact:
    buffer = BytesIO()
    image.save(buffer, format="PNG", compress_level=compress_level)
    return RasterArtifact(
        data=buffer.getvalue(), width=image.width, height=image.height
    )


def striped_image(width: int = 400, height: int = 300) -> Image.Image:
    image = Image.new("RGB", (width, height), "white")
    for x in range(0, width, 7):
        for y in range(height):
            image.putpixel((x, y), (45, 27, 78))
    return image


def decode(raster: RasterArtifact) -> Image.Image:
    with Image.open(BytesIO(raster.data)) as image:
        image.load()
        return image.copy()


class TestOptimize:
    def test_uncompressed_input_shrinks(self):
        raster = make_raster(striped_image(), compress_level=0)

        optimized = optimize(raster)

        assert optimized.size_bytes < raster.size_bytes
        assert (optimized.width, optimized.height) == (400, 300)

    def test_pixels_are_identical(self):
        image = striped_image()
        raster = make_raster(image, compress_level=0)

        optimized = decode(optimize(raster))

        assert optimized.mode == image.mode
        assert optimized.tobytes() == image.tobytes()

    def test_already_optimal_input_is_returned_unchanged(self):
        buffer = BytesIO()
        Image.new("RGB", (50, 50), "white").save(
            buffer, format="PNG", compress_level=9, optimize=True
        )
        raster = RasterArtifact(data=buffer.getvalue(), width=50, height=50)

        assert optimize(raster) is raster

    def test_dimension_mismatch_is_rejected(self):
        raster = make_raster(striped_image())
        wrong = RasterArtifact(data=raster.data, width=401, height=300)

        with pytest.raises(OptimizeError, match="expected 401x300"):
            optimize(wrong)

    def test_undecodable_bytes_are_rejected(self):
        with pytest.raises(OptimizeError):
            optimize(RasterArtifact(data=b"\x89PNG broken", width=1, height=1))

    @settings(max_examples=25, suppress_health_check=[HealthCheck.too_slow])
    @given(
        width=st.integers(min_value=1, max_value=64),
        height=st.integers(min_value=1, max_value=64),
        seed=st.integers(min_value=0, max_value=2**16),
        compress_level=st.integers(min_value=0, max_value=9),
    )
    def test_never_grows_and_keeps_dimensions(
        self, width, height, seed, compress_level
    ):
        rng = random.Random(seed)
        image = Image.frombytes(
            "RGB", (width, height), rng.randbytes(width * height * 3)
        )
        raster = make_raster(image, compress_level=compress_level)

        optimized = optimize(raster)

        assert optimized.size_bytes <= raster.size_bytes
        assert (optimized.width, optimized.height) == (width, height)
        assert decode(optimized).tobytes() == image.tobytes()
