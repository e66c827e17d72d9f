"""Certificate layout engine.

Pure geometry for every certificate field: positions, fitted font sizes and
wrapped paragraph lines. Nothing in here touches a raster backend; text width
comes from an injected measurer so the math is testable with a fake one.

Coordinates are in canvas pixels. Text fields are anchored at their center
(horizontally centered, vertically middle).
"""

import math
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from functools import partial

from schemas import CertificateRequest

CANVAS_WIDTH = 6250
CANVAS_HEIGHT = 4419

# Names wider than this fraction of the canvas are shrunk to fit
NAME_MAX_WIDTH_FRACTION = 0.85

DESCRIPTION_TEXT = "has successfully completed"

Measurer = Callable[[str, int], float]


class FontRole(str, Enum):
    SERIF_BOLD = "serif_bold"
    SANS = "sans"
    SANS_BOLD = "sans_bold"


FontMeasurer = Callable[[FontRole, str, int], float]


@dataclass(frozen=True)
class Shadow:
    color: tuple[int, int, int, int]
    blur: int
    offset_x: int
    offset_y: int


@dataclass(frozen=True)
class TextFieldSpec:
    x: int
    y: int
    font_size: int
    font_role: FontRole
    color: str
    max_width: int | None = None
    line_height: int | None = None
    shadow: Shadow | None = None


@dataclass(frozen=True)
class QrFieldSpec:
    x: int
    y: int
    size: int


NAME_FIELD = TextFieldSpec(
    x=CANVAS_WIDTH // 2,
    y=1800,
    font_size=285,
    font_role=FontRole.SERIF_BOLD,
    color="#2D1B4E",
    # rgba(0, 0, 0, 0.15)
    shadow=Shadow(color=(0, 0, 0, 38), blur=20, offset_x=4, offset_y=4),
)

DESCRIPTION_FIELD = TextFieldSpec(
    x=CANVAS_WIDTH // 2,
    y=2210,
    font_size=85,
    font_role=FontRole.SANS,
    color="#4A4A4A",
    max_width=4275,
    line_height=128,
)

COURSE_FIELD = TextFieldSpec(
    x=CANVAS_WIDTH // 2,
    y=2700,
    font_size=110,
    font_role=FontRole.SANS_BOLD,
    color="#333333",
)

DATE_FIELD = TextFieldSpec(
    x=CANVAS_WIDTH // 2,
    y=3125,
    font_size=71,
    font_role=FontRole.SANS,
    color="#666666",
)

INSTRUCTOR_FIELD = TextFieldSpec(
    x=CANVAS_WIDTH // 2,
    y=3437,
    font_size=71,
    font_role=FontRole.SANS,
    color="#666666",
)

# Top-left corner of a fixed box near the bottom-right of the canvas
QR_FIELD = QrFieldSpec(x=5562, y=3437, size=390)


class NameTooLongError(ValueError):
    """Raised when a recipient name can only fit below the minimum font size."""

    def __init__(self, font_size: int, min_font_size: int):
        self.font_size = font_size
        self.min_font_size = min_font_size
        super().__init__(
            f"Recipient name would render at {font_size}px, "
            f"below the {min_font_size}px minimum"
        )


@dataclass(frozen=True)
class TextFit:
    font_size: int
    text_width: float
    scaled: bool


def fit_text(
    text: str,
    nominal_font_size: int,
    max_width_fraction: float,
    measurer: Measurer,
    canvas_width: int = CANVAS_WIDTH,
) -> TextFit:
    """Shrink a single line of text so it fits within a fraction of the canvas.

    One shrink pass only: the nominal size is scaled by ``max_width / width``
    and floored, then the text is measured once more. Font metrics are close
    enough to linear in size that a second pass is not needed.
    """
    if not text:
        return TextFit(font_size=nominal_font_size, text_width=0, scaled=False)

    max_width = canvas_width * max_width_fraction
    text_width = measurer(text, nominal_font_size)
    if text_width <= max_width:
        return TextFit(
            font_size=nominal_font_size, text_width=text_width, scaled=False
        )

    scale_factor = max_width / text_width
    font_size = math.floor(nominal_font_size * scale_factor)
    return TextFit(
        font_size=font_size,
        text_width=measurer(text, font_size),
        scaled=True,
    )


def iter_wrapped_lines(
    text: str, max_width: float, measure: Callable[[str], float]
) -> Iterator[str]:
    """Greedy word packing; yields lines in order.

    A word that overflows starts a new line unless it is the first word.
    The last line is always yielded, even when it is empty.
    """
    line = ""
    for index, word in enumerate(text.split(" ")):
        test_line = f"{line}{word} "
        if measure(test_line) > max_width and index > 0:
            yield line.strip()
            line = f"{word} "
        else:
            line = test_line
    yield line.strip()


def wrap_text(
    text: str, max_width: float, measure: Callable[[str], float]
) -> tuple[str, ...]:
    return tuple(iter_wrapped_lines(text, max_width, measure))


@dataclass(frozen=True)
class TextPlacement:
    text: str
    x: int
    y: int
    font_role: FontRole
    font_size: int
    color: str
    shadow: Shadow | None = None


@dataclass(frozen=True)
class QrPlacement:
    url: str
    x: int
    y: int
    size: int


@dataclass(frozen=True)
class CertificateLayout:
    name: TextPlacement
    name_fit: TextFit
    description: tuple[TextPlacement, ...]
    course: TextPlacement
    date: TextPlacement
    instructor: TextPlacement
    qr: QrPlacement


def _place(
    field: TextFieldSpec,
    text: str,
    font_size: int | None = None,
    y: int | None = None,
) -> TextPlacement:
    return TextPlacement(
        text=text,
        x=field.x,
        y=field.y if y is None else y,
        font_role=field.font_role,
        font_size=field.font_size if font_size is None else font_size,
        color=field.color,
        shadow=field.shadow,
    )


def compute_layout(
    request: CertificateRequest,
    measure: FontMeasurer,
    verification_url: str,
    min_name_font_size: int | None = None,
) -> CertificateLayout:
    """Compute every field's geometry for one certificate.

    Raises:
        NameTooLongError: If the fitted name size is below ``min_name_font_size``.
    """
    name_fit = fit_text(
        request.student_name,
        NAME_FIELD.font_size,
        NAME_MAX_WIDTH_FRACTION,
        partial(measure, NAME_FIELD.font_role),
    )
    if min_name_font_size is not None and name_fit.font_size < min_name_font_size:
        raise NameTooLongError(name_fit.font_size, min_name_font_size)

    field = DESCRIPTION_FIELD
    lines = wrap_text(
        DESCRIPTION_TEXT,
        field.max_width or CANVAS_WIDTH,
        lambda text: measure(field.font_role, text, field.font_size),
    )
    line_height = field.line_height or field.font_size
    description = tuple(
        _place(field, line, y=field.y + i * line_height) for i, line in enumerate(lines)
    )

    return CertificateLayout(
        name=_place(NAME_FIELD, request.student_name, font_size=name_fit.font_size),
        name_fit=name_fit,
        description=description,
        course=_place(COURSE_FIELD, request.course_name),
        date=_place(DATE_FIELD, f"Completed: {request.completion_date}"),
        instructor=_place(INSTRUCTOR_FIELD, f"Instructor: {request.instructor_name}"),
        qr=QrPlacement(
            url=verification_url,
            x=QR_FIELD.x,
            y=QR_FIELD.y,
            size=QR_FIELD.size,
        ),
    )
