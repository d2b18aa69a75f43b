"""Image decoding and Pillow-based raster helpers.

Images flow through the service as HxWx3 RGB uint8 numpy arrays that are
marked read-only after decoding. Every helper here returns a new array and
leaves its input untouched.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageEnhance, ImageOps, UnidentifiedImageError

from facesift.errors import InputError

if TYPE_CHECKING:
    from numpy.typing import NDArray


def decode_image(image_bytes: bytes, *, max_pixels: int, max_file_size: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into a read-only RGB uint8 array.

    Raises:
        InputError: If the payload is empty, too large, or not a decodable image.
    """
    if not image_bytes:
        raise InputError("Empty image payload")
    if len(image_bytes) > max_file_size:
        raise InputError(f"Image file exceeds {max_file_size} bytes")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > max_pixels:
                raise InputError(f"Image has {width * height} pixels, limit is {max_pixels}")
            rgb = ImageOps.exif_transpose(img).convert("RGB")
            array = np.asarray(rgb, dtype=np.uint8).copy()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise InputError(f"Could not decode image: {exc}") from exc

    array.flags.writeable = False
    return array


def to_pil(image: NDArray[np.uint8]) -> Image.Image:
    return Image.fromarray(np.ascontiguousarray(image))


def resize_image(image: NDArray[np.uint8], factor: float) -> NDArray[np.uint8]:
    """Resize by ``factor`` in both dimensions (at least 1 pixel each)."""
    height, width = image.shape[:2]
    size = (max(1, round(width * factor)), max(1, round(height * factor)))
    resized = to_pil(image).resize(size, Image.Resampling.BILINEAR)
    return np.asarray(resized, dtype=np.uint8)


def enhance_image(
    image: NDArray[np.uint8],
    *,
    contrast: float,
    brightness: float,
    saturation: float,
) -> NDArray[np.uint8]:
    """Return a contrast/brightness/saturation boosted working copy."""
    img = to_pil(image)
    img = ImageEnhance.Contrast(img).enhance(contrast)
    img = ImageEnhance.Brightness(img).enhance(brightness)
    img = ImageEnhance.Color(img).enhance(saturation)
    return np.asarray(img, dtype=np.uint8)


def letterbox(image: NDArray[np.uint8], input_size: int) -> tuple[NDArray[np.uint8], float]:
    """Fit the image into a square canvas anchored top-left.

    Returns:
        The padded ``input_size`` x ``input_size`` canvas and the scale applied
        to the original image.
    """
    height, width = image.shape[:2]
    if height / width > 1.0:
        new_height = input_size
        new_width = max(1, int(new_height * width / height))
    else:
        new_width = input_size
        new_height = max(1, int(new_width * height / width))
    scale = new_height / height

    resized = to_pil(image).resize((new_width, new_height), Image.Resampling.BILINEAR)
    canvas = np.zeros((input_size, input_size, 3), dtype=np.uint8)
    canvas[:new_height, :new_width] = np.asarray(resized, dtype=np.uint8)
    return canvas, scale


def warp_affine(image: NDArray[np.uint8], matrix: NDArray[np.float64], size: int) -> NDArray[np.uint8]:
    """Warp ``image`` with a 2x3 forward affine matrix into a square crop.

    Pillow expects the output-to-input mapping, so the forward matrix is
    inverted before the transform.
    """
    forward = np.vstack([matrix, [0.0, 0.0, 1.0]])
    inverse = np.linalg.inv(forward)[:2].flatten()
    warped = to_pil(image).transform(
        (size, size),
        Image.Transform.AFFINE,
        data=tuple(float(v) for v in inverse),
        resample=Image.Resampling.BILINEAR,
        fillcolor=(0, 0, 0),
    )
    return np.asarray(warped, dtype=np.uint8)


def to_chw_blob(image: NDArray[np.uint8], mean: float, std: float) -> NDArray[np.float32]:
    """Normalize an HxWx3 array into a 1x3xHxW float32 model input."""
    blob = (image.astype(np.float32) - mean) / std
    return np.ascontiguousarray(blob.transpose(2, 0, 1)[np.newaxis])
