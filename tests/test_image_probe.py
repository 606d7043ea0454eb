from PIL import Image

from runtime.image_probe import ImageProbe

from .conftest import png_bytes


async def test_reads_local_file_dimensions(tmp_path):
    path = tmp_path / "result.png"
    path.write_bytes(png_bytes(120, 80))

    assert await ImageProbe().dimensions(str(path)) == (120, 80)


async def test_undecodable_result_returns_none(tmp_path):
    path = tmp_path / "result.png"
    path.write_bytes(b"not an image")

    assert await ImageProbe().dimensions(f"file://{path}") is None


async def test_result_over_decoder_pixel_limit_returns_none(tmp_path, monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    path = tmp_path / "result.png"
    path.write_bytes(png_bytes(100, 100))

    assert await ImageProbe().dimensions(str(path)) is None
