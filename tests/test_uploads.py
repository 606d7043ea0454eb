import pytest
from PIL import Image

from core.errors import UploadRejectedError

from .conftest import png_bytes


async def test_select_and_decode(registry):
    upload = registry.select("cat.png", "image/png", png_bytes(640, 480))

    assert not upload.has_dimensions
    assert upload.raw_path.exists()

    decoded = await registry.decode()

    assert decoded is upload
    assert (upload.width, upload.height) == (640, 480)
    with Image.open(upload.preview_path) as preview:
        assert max(preview.size) == registry.preview_edge


async def test_selecting_a_new_file_releases_the_previous_one(registry):
    first = registry.select("a.png", "image/png", png_bytes())
    await registry.decode(first)
    second = registry.select("b.png", "image/png", png_bytes())

    assert registry.current is second
    assert registry.get(first.id) is None
    assert not first.raw_path.exists()
    assert not first.preview_path.exists()


async def test_decode_of_replaced_upload_does_not_set_dimensions(registry):
    first = registry.select("a.png", "image/png", png_bytes())
    data = first.read_bytes()
    registry.select("b.png", "image/png", png_bytes())
    first.raw_path.write_bytes(data)

    result = await registry.decode(first)

    assert result is first
    assert not first.has_dimensions


@pytest.mark.parametrize("filename,content_type", [("notes.txt", "text/plain"), ("clip.mp4", "video/mp4")])
def test_rejects_non_images(registry, filename, content_type):
    with pytest.raises(UploadRejectedError):
        registry.select(filename, content_type, b"data")
    assert registry.current is None


def test_rejects_empty_and_oversized_files(registry):
    with pytest.raises(UploadRejectedError):
        registry.select("a.png", "image/png", b"")

    registry.max_upload_bytes = 10
    with pytest.raises(UploadRejectedError, match="too large"):
        registry.select("a.png", "image/png", png_bytes())


def test_extension_is_enough_without_content_type(registry):
    upload = registry.select("photo.JPG", None, b"\xff\xd8\xff")
    assert upload.raw_path.suffix == ".jpg"


async def test_undecodable_bytes_are_rejected(registry):
    registry.select("fake.png", "image/png", b"not an image at all")
    with pytest.raises(UploadRejectedError, match="decode"):
        await registry.decode()


def test_dimensions_are_set_once(registry):
    upload = registry.select("a.png", "image/png", png_bytes())
    upload.set_dimensions(10, 10)
    with pytest.raises(AttributeError):
        upload.set_dimensions(20, 20)


def test_clear_removes_files(registry):
    upload = registry.select("a.png", "image/png", png_bytes())
    registry.clear()
    assert registry.current is None
    assert not upload.raw_path.exists()


async def test_image_over_decoder_pixel_limit_is_rejected(registry, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    upload = registry.select("huge.png", "image/png", png_bytes(100, 100))

    with pytest.raises(UploadRejectedError, match="too large to decode"):
        await registry.decode(upload)
    assert not upload.has_dimensions
