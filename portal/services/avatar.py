import io

from PIL import Image, ImageOps, UnidentifiedImageError

AVATAR_SIZE = (128, 128)
MAX_AVATAR_BYTES = 2 * 1024 * 1024


class InvalidImageError(ValueError):
    pass


def process_avatar(file_bytes: bytes) -> bytes:
    """
    Crop-to-cover and resize an uploaded image to a 128x128 PNG.

    Raises InvalidImageError when the bytes are not a readable image.
    """
    if len(file_bytes) > MAX_AVATAR_BYTES:
        raise InvalidImageError("Image must be 2MB or smaller")
    try:
        image = Image.open(io.BytesIO(file_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImageError("File is not a valid image") from exc

    image = ImageOps.exif_transpose(image)
    if image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA")
    image = ImageOps.fit(image, AVATAR_SIZE, Image.Resampling.LANCZOS)

    out = io.BytesIO()
    image.save(out, format="PNG", optimize=True)
    return out.getvalue()
