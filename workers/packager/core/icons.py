"""
Icon pipeline — one source raster to a platform's full icon set.

The source is normalized once to a square canonical canvas; every
target size is derived from that buffer.  Failures never propagate as
exceptions: the pipeline returns an ``IconOutcome`` and the caller
decides whether a failure is fatal.
"""
import io
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from PIL import Image, ImageOps, UnidentifiedImageError

from packager.exceptions import IconGenerationError

logger = logging.getLogger(__name__)

CANONICAL_SIZE = 1024
ADAPTIVE_SAFE_ZONE = 0.61

TRANSPARENT = (0, 0, 0, 0)
WHITE = (255, 255, 255, 255)


@dataclass(frozen=True)
class IconSpec:
    """One icon file a platform expects."""
    relative_dir: str            # directory under the project root
    file_name: str
    size: int
    fit: str = "contain"         # contain | cover
    background: str = "transparent"  # transparent | opaque
    safe_zone: Optional[float] = None

    @property
    def relative_path(self) -> str:
        return f"{self.relative_dir}/{self.file_name}" if self.relative_dir else self.file_name


class IconOutcomeKind(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    SOFT_FAILED = "soft_failed"
    HARD_FAILED = "hard_failed"


@dataclass(frozen=True)
class IconOutcome:
    kind: IconOutcomeKind
    reason: Optional[str] = None
    written: int = 0

    @classmethod
    def ok(cls, written: int) -> "IconOutcome":
        return cls(IconOutcomeKind.OK, written=written)

    @classmethod
    def skipped(cls, reason: str) -> "IconOutcome":
        return cls(IconOutcomeKind.SKIPPED, reason)

    @classmethod
    def soft_failed(cls, reason: str, written: int = 0) -> "IconOutcome":
        return cls(IconOutcomeKind.SOFT_FAILED, reason, written)

    @classmethod
    def hard_failed(cls, reason: str) -> "IconOutcome":
        return cls(IconOutcomeKind.HARD_FAILED, reason)

    @property
    def failed(self) -> bool:
        return self.kind in (IconOutcomeKind.SOFT_FAILED, IconOutcomeKind.HARD_FAILED)

    def raise_if_fatal(self) -> None:
        if self.kind is IconOutcomeKind.HARD_FAILED:
            raise IconGenerationError(self.reason or "Icon generation failed")


# ── Raster helpers ───────────────────────────────────────────────────────────

def round_half_up(value: float) -> int:
    return int(value + 0.5)


def png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def load_image(data: bytes) -> Image.Image:
    """Decode *data* into an RGBA image.

    Raises:
        IconGenerationError: If the bytes are not a readable raster.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise IconGenerationError(f"Unreadable source image: {e}") from e
    return img.convert("RGBA")


def normalize(source: Image.Image, size: int = CANONICAL_SIZE, fit: str = "contain") -> Image.Image:
    """
    Square *source* onto a ``size``×``size`` transparent canvas.

    ``contain`` scales the whole image inside the square and pads;
    ``cover`` fills the square and crops the overflow around the center.
    """
    if fit == "cover":
        return ImageOps.fit(source, (size, size), Image.LANCZOS)
    scaled = ImageOps.contain(source, (size, size), Image.LANCZOS)
    canvas = Image.new("RGBA", (size, size), TRANSPARENT)
    canvas.paste(scaled, ((size - scaled.width) // 2, (size - scaled.height) // 2))
    return canvas


def safe_zone_size(size: int, ratio: float) -> int:
    return round_half_up(size * ratio)


def render(canonical: Image.Image, spec: IconSpec) -> Image.Image:
    """Produce the image for one spec from the canonical buffer.

    Safe-zone icons are padded symmetrically; when the leftover space is
    odd the extra pixel goes to the right and bottom edges.
    """
    if spec.safe_zone:
        inner = safe_zone_size(spec.size, spec.safe_zone)
        scaled = canonical.resize((inner, inner), Image.LANCZOS)
        img = Image.new("RGBA", (spec.size, spec.size), TRANSPARENT)
        offset = (spec.size - inner) // 2
        img.paste(scaled, (offset, offset))
    else:
        img = canonical.resize((spec.size, spec.size), Image.LANCZOS)

    if spec.background == "opaque":
        backdrop = Image.new("RGBA", img.size, WHITE)
        img = Image.alpha_composite(backdrop, img).convert("RGB")
    return img


def solid_image(size: int, color=WHITE) -> Image.Image:
    return Image.new("RGBA", (size, size), color)


# ── Pipeline ─────────────────────────────────────────────────────────────────

def generate_icons(
    root: Path,
    source: Optional[bytes],
    specs: Sequence[IconSpec],
    build_id: str = "-",
) -> IconOutcome:
    """
    Write every spec whose destination directory exists under *root*.

    Specs whose directory is missing are skipped silently (the skeleton
    does not ship that density).  A per-file error is logged and counted;
    the outcome is ``soft_failed`` if anything went wrong.
    """
    if source is None:
        return IconOutcome.skipped("no icon supplied")

    try:
        original = load_image(source)
    except IconGenerationError as e:
        logger.warning("[build %s] icon skipped: %s", build_id, e)
        return IconOutcome.soft_failed(str(e))

    canonical = {"contain": normalize(original, fit="contain")}
    written = 0
    errors: list[str] = []

    for spec in specs:
        target_dir = root / spec.relative_dir if spec.relative_dir else root
        if not target_dir.is_dir():
            logger.debug("[build %s] skipping %s - directory not found", build_id, spec.relative_path)
            continue
        try:
            if spec.fit not in canonical:
                canonical[spec.fit] = normalize(original, fit=spec.fit)
            render(canonical[spec.fit], spec).save(target_dir / spec.file_name, format="PNG")
            written += 1
        except (OSError, ValueError) as e:
            logger.warning("[build %s] failed to write %s: %s", build_id, spec.relative_path, e)
            errors.append(f"{spec.relative_path}: {e}")

    logger.info("[build %s] wrote %s icon file(s)", build_id, written)
    if errors:
        return IconOutcome.soft_failed("; ".join(errors), written)
    return IconOutcome.ok(written)
