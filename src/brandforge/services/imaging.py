"""Pure image-processing helpers (Pillow).

Every function takes encoded image bytes and returns new encoded bytes; nothing
here touches the network or the database. Callers run these through
``asyncio.to_thread`` because Pillow work is CPU-bound.
"""

import io

from PIL import Image, ImageChops, ImageOps, UnidentifiedImageError

TRANSPARENT = (0, 0, 0, 0)
WHITE = (255, 255, 255, 255)
BLACK = (0, 0, 0, 255)

STICKER_SIZE = 512
STICKER_MAX_BYTES = 512 * 1024


def open_image(data: bytes) -> Image.Image:
    """Decode image bytes.

    Raises:
        ValueError: If the bytes are not a decodable image
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Not a decodable image: {e}") from e
    return image


def encode(image: Image.Image, fmt: str = "PNG", **save_kwargs) -> bytes:
    buffer = io.BytesIO()
    if fmt.upper() in ("JPEG", "JPG") and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    image.save(buffer, format=fmt.upper().replace("JPG", "JPEG"), **save_kwargs)
    return buffer.getvalue()


def image_size(data: bytes) -> tuple[int, int]:
    """Return (width, height) of encoded image bytes."""
    return open_image(data).size


def resize(
    data: bytes,
    width: int,
    height: int | None = None,
    fit: str = "contain",
    background: tuple[int, int, int, int] = TRANSPARENT,
) -> bytes:
    """Resize to exactly ``width`` x ``height`` pixels and encode as PNG.

    Args:
        data: Source image bytes
        width: Target width
        height: Target height (defaults to width)
        fit: "contain" letterboxes onto ``background``; "cover" crops to fill
        background: RGBA padding colour for "contain"

    Returns:
        PNG bytes with the exact requested dimensions

    Raises:
        ValueError: On undecodable input, bad dimensions or unknown fit
    """
    height = height or width
    if width < 1 or height < 1:
        raise ValueError(f"Invalid target size {width}x{height}")

    source = open_image(data).convert("RGBA")

    if fit == "cover":
        result = ImageOps.fit(source, (width, height), method=Image.Resampling.LANCZOS)
    elif fit == "contain":
        fitted = ImageOps.contain(source, (width, height), method=Image.Resampling.LANCZOS)
        result = Image.new("RGBA", (width, height), background)
        offset = ((width - fitted.width) // 2, (height - fitted.height) // 2)
        result.paste(fitted, offset, fitted)
    else:
        raise ValueError(f"Unknown fit mode: {fit}")

    return encode(result, "PNG", optimize=True)


def reformat(data: bytes, fmt: str = "PNG") -> bytes:
    """Re-encode an image in another format (PNG, WEBP, JPEG)."""
    image = open_image(data)
    if fmt.upper() in ("PNG", "WEBP") and image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA")
    return encode(image, fmt)


def remove_background(data: bytes, threshold: int = 240) -> bytes:
    """Make near-white pixels transparent.

    A pixel whose three channels are all >= ``threshold`` loses its alpha;
    existing transparency is preserved.
    """
    image = open_image(data).convert("RGBA")
    red, green, blue, alpha = image.split()
    darkest = ImageChops.darker(ImageChops.darker(red, green), blue)
    keep = darkest.point(lambda value: 0 if value >= threshold else 255)
    image.putalpha(ImageChops.multiply(alpha, keep))
    return encode(image, "PNG", optimize=True)


def on_background(
    data: bytes,
    background: tuple[int, int, int, int],
    foreground: tuple[int, int, int] | None = None,
) -> bytes:
    """Composite an image onto a solid background.

    Args:
        data: Source image bytes (transparency is used as the mask)
        background: Canvas colour
        foreground: If set, recolour every visible pixel to this colour first
            (white-on-black and black-on-white logo variants)

    Returns:
        PNG bytes, same dimensions as the source
    """
    image = open_image(data).convert("RGBA")
    canvas = Image.new("RGBA", image.size, background)
    if foreground is not None:
        solid = Image.new("RGBA", image.size, foreground + (255,))
        canvas.paste(solid, (0, 0), image.split()[3])
    else:
        canvas.alpha_composite(image)
    return encode(canvas, "PNG", optimize=True)


def make_sticker(
    data: bytes, size: int = STICKER_SIZE, max_bytes: int = STICKER_MAX_BYTES
) -> bytes:
    """Normalise an image into a square sticker PNG.

    The image is centre-cropped to ``size`` x ``size``. If the PNG exceeds
    ``max_bytes`` it is palette-quantised, which keeps the alpha channel.
    """
    sticker = resize(data, size, size, fit="cover")
    if len(sticker) <= max_bytes:
        return sticker

    image = open_image(sticker).convert("RGBA")
    quantized = image.quantize(colors=256, method=Image.Quantize.FASTOCTREE)
    return encode(quantized, "PNG", optimize=True)
