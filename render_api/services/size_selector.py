"""
Output canvas selection for the upstream image endpoint.

The upstream model accepts a small fixed set of sizes. Redesign renders should
keep the source photo's shape so the structure lock is not fighting a crop.
"""
import io
import logging
from fractions import Fraction
from typing import Any, Optional, Tuple

from PIL import Image

logger = logging.getLogger(__name__)

ALLOWED_SIZES = ("256x256", "512x512", "768x768", "1024x1024", "1280x800", "800x1280")

# Candidates considered when matching a source aspect ratio, landscape first.
CANVAS_CANDIDATES: Tuple[Tuple[int, int], ...] = ((1280, 800), (1024, 1024), (800, 1280))

DEFAULT_SIZE = "1024x1024"
DEFAULT_INSPIRATION_SIZE = "1280x800"


def _as_positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if number > 0 else None


def select_output_size(width: Any, height: Any) -> str:
    """
    Pick the allowed canvas whose aspect ratio is closest to width/height.

    Missing, zero or negative dimensions return DEFAULT_SIZE. Exact ties go to
    the more landscape candidate.
    """
    w = _as_positive_int(width)
    h = _as_positive_int(height)
    if w is None or h is None:
        return DEFAULT_SIZE

    source_ratio = Fraction(w, h)
    best = None
    best_diff = None
    # Candidates are ordered landscape-first, so strict "<" keeps the landscape one on ties
    for cw, ch in CANVAS_CANDIDATES:
        diff = abs(Fraction(cw, ch) - source_ratio)
        if best_diff is None or diff < best_diff:
            best, best_diff = (cw, ch), diff
    return f"{best[0]}x{best[1]}"


def is_allowed_size(size: Any) -> bool:
    return isinstance(size, str) and size.strip().lower() in ALLOWED_SIZES


def resolve_size(
    requested: Any,
    width: Any = None,
    height: Any = None,
    default: str = DEFAULT_SIZE,
    image_data: Optional[bytes] = None,
) -> str:
    """
    Honour a valid explicit size, otherwise derive one from the source dimensions.

    Declared width/height win; image_data (the encoded source photo) is only
    read when they are missing or unusable.
    """
    if is_allowed_size(requested):
        return requested.strip().lower()
    if requested:
        logger.info(f"Ignoring unsupported size {requested!r}, selecting from source dimensions")
    if not (_as_positive_int(width) and _as_positive_int(height)):
        width, height = image_dimensions(image_data) or (None, None)
    if _as_positive_int(width) and _as_positive_int(height):
        return select_output_size(width, height)
    return default


def image_dimensions(data: Optional[bytes]) -> Optional[Tuple[int, int]]:
    """Read (width, height) from encoded image bytes without decoding pixels."""
    if not data:
        return None
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read image dimensions: {e}")
        return None
