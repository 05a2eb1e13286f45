from __future__ import annotations

import base64
import binascii
import io
from typing import Any, Iterable, List, Sequence, Tuple

from PIL import Image, ImageDraw, ImageOps, UnidentifiedImageError

from agency.errors import ValidationError


Point = Tuple[float, float]

DEFAULT_CANVAS_SIZE = (500, 200)
_DATA_URL_PREFIX = "data:image/png;base64,"


def _signature_invalid(details: str) -> ValidationError:
    return ValidationError(code="signature_invalid", message_key="signature_invalid", details=details)


class SignatureCapture:
    """Signature drawn on the portal canvas, either as raw strokes or as an exported PNG."""

    def __init__(
        self,
        *,
        strokes: Sequence[Sequence[Point]] | None = None,
        image: Image.Image | None = None,
        size: Tuple[int, int] = DEFAULT_CANVAS_SIZE,
    ) -> None:
        self.strokes: List[List[Point]] = [list(stroke) for stroke in (strokes or []) if stroke]
        self.image = image
        self.size = image.size if image is not None else size

    @classmethod
    def empty(cls) -> "SignatureCapture":
        return cls()

    @classmethod
    def from_strokes(
        cls,
        strokes: Iterable[Iterable[Any]],
        *,
        width: int = DEFAULT_CANVAS_SIZE[0],
        height: int = DEFAULT_CANVAS_SIZE[1],
    ) -> "SignatureCapture":
        parsed: List[List[Point]] = []
        for stroke in strokes or []:
            points: List[Point] = []
            for point in stroke or []:
                if isinstance(point, dict):
                    raw = (point.get("x"), point.get("y"))
                else:
                    raw = tuple(point)[:2]
                try:
                    points.append((float(raw[0]), float(raw[1])))
                except (TypeError, ValueError, IndexError) as exc:
                    raise _signature_invalid(f"invalid stroke point: {point!r}") from exc
            if points:
                parsed.append(points)
        return cls(strokes=parsed, size=(max(1, int(width)), max(1, int(height))))

    @classmethod
    def from_data_url(cls, data_url: str | None) -> "SignatureCapture":
        raw = str(data_url or "").strip()
        if not raw:
            return cls.empty()
        if raw.startswith("data:"):
            _header, _sep, raw = raw.partition(",")
        try:
            image_bytes = base64.b64decode(raw, validate=True)
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (binascii.Error, ValueError, UnidentifiedImageError, OSError) as exc:
            raise _signature_invalid("signature image could not be decoded") from exc
        return cls(image=image)

    @classmethod
    def coerce(cls, value: Any) -> "SignatureCapture":
        """Accept what the portal posts: a data URL, a strokes payload or an existing capture."""
        if isinstance(value, SignatureCapture):
            return value
        if value is None:
            return cls.empty()
        if isinstance(value, str):
            return cls.from_data_url(value)
        if isinstance(value, dict):
            if value.get("dataUrl") or value.get("imagem"):
                return cls.from_data_url(value.get("dataUrl") or value.get("imagem"))
            return cls.from_strokes(
                value.get("strokes") or [],
                width=value.get("width") or DEFAULT_CANVAS_SIZE[0],
                height=value.get("height") or DEFAULT_CANVAS_SIZE[1],
            )
        if isinstance(value, (list, tuple)):
            return cls.from_strokes(value)
        raise _signature_invalid(f"unsupported signature payload: {type(value).__name__}")

    def is_empty(self) -> bool:
        if self.image is None:
            return not self.strokes
        rgba = self.image.convert("RGBA")
        if rgba.getchannel("A").getbbox() is None:
            return True
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        flattened = Image.alpha_composite(background, rgba).convert("L")
        return ImageOps.invert(flattened).getbbox() is None

    def to_image(self) -> Image.Image:
        if self.image is not None:
            return self.image.convert("RGBA")
        canvas = Image.new("RGBA", self.size, (255, 255, 255, 0))
        draw = ImageDraw.Draw(canvas)
        for stroke in self.strokes:
            if len(stroke) == 1:
                x, y = stroke[0]
                draw.ellipse((x - 1.5, y - 1.5, x + 1.5, y + 1.5), fill=(17, 24, 39, 255))
                continue
            draw.line(stroke, fill=(17, 24, 39, 255), width=3, joint="curve")
        return canvas

    def to_png(self) -> bytes:
        buffer = io.BytesIO()
        self.to_image().save(buffer, format="PNG")
        return buffer.getvalue()

    def to_data_url(self) -> str:
        return _DATA_URL_PREFIX + base64.b64encode(self.to_png()).decode("ascii")
