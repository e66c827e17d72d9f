"""Certificate raster composition.

Paints the geometry computed by ``rendering.layout`` onto the certificate
template with Pillow. Field order is fixed: background, name, description,
course, date, instructor, QR code. The QR code is always painted last.
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from io import BytesIO

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from core.logger import get_logger
from rendering.layout import (
    CANVAS_HEIGHT,
    CANVAS_WIDTH,
    FontRole,
    NameTooLongError,
    TextPlacement,
    compute_layout,
)
from rendering.qr import (
    QR_BASE_URL,
    QrEncodeError,
    build_verification_url,
    render_qr_image,
)
from schemas import CertificateRequest

logger = get_logger(__name__)

PNG_MIME_TYPE = "image/png"

# The raw raster is re-encoded by the optimizer; favour speed here
RAW_PNG_COMPRESS_LEVEL = 1

Font = ImageFont.FreeTypeFont | ImageFont.ImageFont


class CompositionStage(str, Enum):
    INIT = "INIT"
    BACKGROUND_DRAWN = "BACKGROUND_DRAWN"
    NAME_DRAWN = "NAME_DRAWN"
    DESCRIPTION_DRAWN = "DESCRIPTION_DRAWN"
    COURSE_DRAWN = "COURSE_DRAWN"
    DATE_DRAWN = "DATE_DRAWN"
    INSTRUCTOR_DRAWN = "INSTRUCTOR_DRAWN"
    QR_DRAWN = "QR_DRAWN"
    DONE = "DONE"


class CompositionError(Exception):
    """Raised when any drawing or measurement step fails.

    ``stage`` is the last stage that completed before the failure.
    """

    def __init__(self, stage: CompositionStage, message: str):
        self.stage = stage
        super().__init__(message)


@dataclass(frozen=True)
class RasterArtifact:
    data: bytes
    width: int
    height: int
    mime_type: str = PNG_MIME_TYPE

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@lru_cache(maxsize=64)
def load_font(path: str, size: int) -> Font:
    """Load a TrueType font, falling back to Pillow's bundled scalable font."""
    if path:
        return ImageFont.truetype(path, size=size)
    return ImageFont.load_default(size=size)


@dataclass(frozen=True)
class FontSet:
    """Font file per role; empty paths use Pillow's bundled font."""

    serif_bold: str = ""
    sans: str = ""
    sans_bold: str = ""

    def path_for(self, role: FontRole) -> str:
        return {
            FontRole.SERIF_BOLD: self.serif_bold,
            FontRole.SANS: self.sans,
            FontRole.SANS_BOLD: self.sans_bold,
        }[role]

    def font(self, role: FontRole, size: int) -> Font:
        return load_font(self.path_for(role), size)

    def measure(self, role: FontRole, text: str, size: int) -> float:
        return self.font(role, size).getlength(text)


def _open_template(template: bytes | Image.Image) -> Image.Image:
    if isinstance(template, Image.Image):
        image = template
    else:
        image = Image.open(BytesIO(template))
    image = image.convert("RGB")
    if image.size != (CANVAS_WIDTH, CANVAS_HEIGHT):
        image = image.resize((CANVAS_WIDTH, CANVAS_HEIGHT), Image.Resampling.LANCZOS)
    return image


def _draw_shadow(canvas: Image.Image, placement: TextPlacement, font: Font) -> None:
    """Blur a tinted copy of the text onto the canvas under where it will be drawn.

    Works on a crop around the text only; the shadow never reaches other fields.
    """
    shadow = placement.shadow
    if shadow is None:
        return

    left, top, right, bottom = ImageDraw.Draw(canvas).textbbox(
        (placement.x, placement.y), placement.text, font=font, anchor="mm"
    )
    pad = shadow.blur * 2 + max(abs(shadow.offset_x), abs(shadow.offset_y))
    box = (
        max(0, int(left) - pad),
        max(0, int(top) - pad),
        min(canvas.width, int(right) + pad),
        min(canvas.height, int(bottom) + pad),
    )
    if box[0] >= box[2] or box[1] >= box[3]:
        return

    layer = Image.new("RGBA", (box[2] - box[0], box[3] - box[1]), (0, 0, 0, 0))
    ImageDraw.Draw(layer).text(
        (
            placement.x - box[0] + shadow.offset_x,
            placement.y - box[1] + shadow.offset_y,
        ),
        placement.text,
        font=font,
        fill=shadow.color,
        anchor="mm",
    )
    # Canvas-style blur values are twice the gaussian standard deviation
    layer = layer.filter(ImageFilter.GaussianBlur(radius=shadow.blur / 2))

    region = canvas.crop(box).convert("RGBA")
    region.alpha_composite(layer)
    canvas.paste(region.convert("RGB"), box[:2])


def _draw_text(canvas: Image.Image, placement: TextPlacement, fonts: FontSet) -> None:
    font = fonts.font(placement.font_role, placement.font_size)
    _draw_shadow(canvas, placement, font)
    ImageDraw.Draw(canvas).text(
        (placement.x, placement.y),
        placement.text,
        font=font,
        fill=placement.color,
        anchor="mm",
    )


def compose(
    template: bytes | Image.Image,
    request: CertificateRequest,
    *,
    fonts: FontSet | None = None,
    qr_base_url: str = QR_BASE_URL,
    min_name_font_size: int | None = None,
) -> RasterArtifact:
    """Paint every certificate field onto the template.

    Raises:
        NameTooLongError: If the name only fits below ``min_name_font_size``.
        QrEncodeError: If the verification QR code cannot be rendered.
        CompositionError: For any other drawing or measurement failure.
    """
    fonts = fonts or FontSet()
    stage = CompositionStage.INIT

    try:
        layout = compute_layout(
            request,
            fonts.measure,
            build_verification_url(request.certificate_id, qr_base_url),
            min_name_font_size=min_name_font_size,
        )

        canvas = _open_template(template)
        stage = CompositionStage.BACKGROUND_DRAWN

        _draw_text(canvas, layout.name, fonts)
        stage = CompositionStage.NAME_DRAWN
        logger.debug(
            "certificate.name.rendered",
            font_size=layout.name_fit.font_size,
            scaled=layout.name_fit.scaled,
        )

        for line in layout.description:
            _draw_text(canvas, line, fonts)
        stage = CompositionStage.DESCRIPTION_DRAWN

        _draw_text(canvas, layout.course, fonts)
        stage = CompositionStage.COURSE_DRAWN

        _draw_text(canvas, layout.date, fonts)
        stage = CompositionStage.DATE_DRAWN

        _draw_text(canvas, layout.instructor, fonts)
        stage = CompositionStage.INSTRUCTOR_DRAWN

        qr_image = render_qr_image(layout.qr.url, layout.qr.size)
        canvas.paste(qr_image, (layout.qr.x, layout.qr.y))
        stage = CompositionStage.QR_DRAWN

        buffer = BytesIO()
        canvas.save(buffer, format="PNG", compress_level=RAW_PNG_COMPRESS_LEVEL)
        stage = CompositionStage.DONE
    except (NameTooLongError, QrEncodeError):
        raise
    except Exception as e:
        raise CompositionError(
            stage, f"Composition failed after {stage.value}: {e}"
        ) from e

    return RasterArtifact(
        data=buffer.getvalue(), width=canvas.width, height=canvas.height
    )
