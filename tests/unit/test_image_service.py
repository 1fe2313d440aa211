import io

import pytest
from PIL import Image

from src.domain.errors import InvalidImageError
from src.domain.services.image_service import ImageService


def jpeg_with_exif() -> bytes:
    img = Image.new("RGB", (40, 30), (10, 200, 90))
    exif = Image.Exif()
    exif[0x010F] = "TestCam"  # Make
    buf = io.BytesIO()
    img.save(buf, format="JPEG", exif=exif.tobytes())
    return buf.getvalue()


def png_bytes(w=2000, h=1000) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (w, h), (1, 2, 3)).save(buf, format="PNG")
    return buf.getvalue()


def test_parse_data_url(image_data_url):
    mime, data = ImageService.parse_data_url(image_data_url)
    assert mime == "image/jpeg"
    assert data.startswith(b"\xff\xd8")


@pytest.mark.parametrize("bad", ["", "not-a-data-url", "data:image/png;base64,@@@"])
def test_parse_data_url_rejects_garbage(bad):
    with pytest.raises(InvalidImageError):
        ImageService.parse_data_url(bad)


def test_validate_flags_large_images_but_accepts_them():
    big = "data:image/png;base64," + "A" * 80_000
    result = ImageService.validate_image_data_url(big)
    assert result.valid
    assert result.size_kb > 45
    assert "compression recommended" in result.error

    assert not ImageService.validate_image_data_url("").valid
    assert not ImageService.validate_image_data_url("data:text/plain;base64,AAAA").valid


def test_strip_exif_removes_app1_and_keeps_image_readable():
    original = jpeg_with_exif()
    assert b"Exif\x00\x00" in original

    stripped = ImageService.strip_exif(original)
    assert b"Exif\x00\x00" not in stripped
    assert stripped.startswith(b"\xff\xd8")
    with Image.open(io.BytesIO(stripped)) as img:
        assert img.size == (40, 30)


def test_strip_exif_leaves_non_jpeg_untouched():
    data = png_bytes(4, 4)
    assert ImageService.strip_exif(data) == data


def test_compress_image_fits_bounds_and_keeps_aspect():
    out = ImageService.compress_image(png_bytes(), 1200, 1200, quality=85)
    assert ImageService.image_dimensions(out) == (1200, 600)
    with Image.open(io.BytesIO(out)) as img:
        assert img.format == "WEBP"


def test_compress_image_never_upscales():
    out = ImageService.compress_image(png_bytes(100, 50), 1200, 1200)
    assert ImageService.image_dimensions(out) == (100, 50)


def test_compress_image_rejects_non_images():
    with pytest.raises(InvalidImageError):
        ImageService.compress_image(b"definitely not an image", 100, 100)


def test_sanitize_filename():
    assert ImageService.sanitize_filename("my meal (1).jpg") == "my_meal_1_.jpg"
    assert len(ImageService.sanitize_filename("a" * 300)) == 100
