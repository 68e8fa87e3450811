"""Image decoding, resizing and encoding helpers for the upload pipeline."""

from pathlib import Path
from typing import Any, Dict, Union

from PIL import Image, ImageOps

PNG_FORMAT = "PNG"


def output_format_for(extension: str, lossy_format: str = "JPEG") -> str:
    """
    Choose the encoder for an image extension.

    PNG inputs stay PNG; every other image is re-encoded to ``lossy_format``.
    """
    if extension.lstrip(".").lower() == "png":
        return PNG_FORMAT
    return lossy_format.upper()


def open_image(path: Union[str, Path]) -> Image.Image:
    """
    Decode an image fully into memory with EXIF orientation applied.

    Args:
        path: Image file to read

    Returns:
        Loaded PIL Image, detached from the file handle
    """
    with Image.open(path) as img:
        img.load()
        source_format = img.format
        image = reduce_bit_depth(ImageOps.exif_transpose(img))
    # transposing returns a copy, which drops the format
    image.format = source_format
    return image


def reduce_bit_depth(img: Image.Image) -> Image.Image:
    """
    Map 16-bit and 32-bit single channel images onto 8-bit grayscale.

    Pillow clamps such values when converting to "L" or "RGB", so they are
    scaled first: integer samples above 255 are treated as 16-bit, float
    samples in 0-1 as normalized.
    """
    if img.mode.startswith("I;16"):
        img = img.convert("I")
    if img.mode not in ("I", "F"):
        return img

    _, high = img.getextrema()
    if img.mode == "F" and high <= 1.0:
        scale = 255.0
    elif high > 255:
        scale = 1 / 256
    else:
        scale = 1.0
    if scale != 1.0:
        img = img.point(lambda v: v * scale)
    return img.convert("L")


def resize_to_width(img: Image.Image, max_width: int) -> Image.Image:
    """
    Downscale an image to at most ``max_width`` pixels wide.

    Aspect ratio is preserved and smaller images are never upscaled.
    """
    width, height = img.size
    if width <= max_width:
        return img
    new_height = max(1, round(height * max_width / width))
    return img.resize((max_width, new_height), Image.Resampling.LANCZOS)


def has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (
        img.mode == "P" and "transparency" in img.info
    )


def flatten_alpha(img: Image.Image, background=(255, 255, 255)) -> Image.Image:
    """Composite a transparent image onto a solid background (JPEG has no alpha)."""
    rgba = img.convert("RGBA")
    canvas = Image.new("RGB", rgba.size, background)
    canvas.paste(rgba, mask=rgba.split()[-1])
    return canvas


def png_palette_colors(quality: int) -> int:
    """Palette size used for a PNG pass at ``quality`` (1-100)."""
    return max(2, min(256, round(256 * quality / 100)))


def prepare_for_format(img: Image.Image, format_type: str) -> Image.Image:
    """Convert colour mode so that ``format_type`` can encode the image."""
    img = reduce_bit_depth(img)
    if format_type == "JPEG":
        if has_alpha(img):
            return flatten_alpha(img)
        if img.mode not in ("RGB", "L"):
            return img.convert("RGB")
        return img
    if format_type == "WEBP":
        if has_alpha(img):
            return img.convert("RGBA")
        if img.mode != "RGB":
            return img.convert("RGB")
        return img
    # PNG
    if has_alpha(img):
        return img.convert("RGBA")
    if img.mode not in ("RGB", "RGBA"):
        return img.convert("RGB")
    return img


def encode_image(
    img: Image.Image,
    dest_path: Union[str, Path],
    format_type: str,
    quality: int,
) -> None:
    """
    Encode ``img`` into ``dest_path`` at the given quality.

    Lossy formats use ``quality`` directly. PNG is lossless, so quality
    controls the palette size instead: 100 keeps full colour, anything
    lower quantizes to a proportionally smaller palette.
    """
    prepared = prepare_for_format(img, format_type)

    if format_type == "JPEG":
        prepared.save(
            dest_path,
            format="JPEG",
            quality=quality,
            optimize=True,
            progressive=True,
        )
    elif format_type == "WEBP":
        prepared.save(dest_path, format="WEBP", quality=quality, method=4)
    elif format_type == PNG_FORMAT:
        if quality < 100:
            method = (
                Image.Quantize.FASTOCTREE
                if prepared.mode == "RGBA"
                else Image.Quantize.MEDIANCUT
            )
            prepared = prepared.quantize(colors=png_palette_colors(quality), method=method)
        prepared.save(dest_path, format="PNG", optimize=True, compress_level=9)
    else:
        raise ValueError(f"Unknown output format: {format_type}")


def describe_image(img: Image.Image) -> Dict[str, Any]:
    """Basic image information for log metadata."""
    return {
        "width": img.width,
        "height": img.height,
        "format": img.format or "unknown",
        "mode": img.mode,
    }
