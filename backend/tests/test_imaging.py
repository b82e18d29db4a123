import base64
import io

from PIL import Image

from conftest import make_png
from screencoder.services.imaging import encode_screenshot, is_dark, preprocess_screenshot


def _decode(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


def test_dark_screenshot_is_inverted():
    processed = preprocess_screenshot(make_png(color=(20, 20, 30)))
    image = _decode(processed)

    assert image.format == "PNG"
    assert image.getpixel((0, 0)) == (235, 235, 225)


def test_light_screenshot_is_kept():
    image = _decode(preprocess_screenshot(make_png(color=(250, 250, 250))))
    assert image.getpixel((0, 0)) == (250, 250, 250)


def test_jpeg_is_converted_to_png():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), (200, 200, 200)).save(buffer, format="JPEG")

    image = _decode(preprocess_screenshot(buffer.getvalue()))
    assert image.format == "PNG"


def test_undecodable_input_is_returned_unchanged():
    data = b"definitely not an image"
    assert preprocess_screenshot(data) is data


def test_is_dark_threshold():
    assert is_dark(Image.new("RGB", (2, 2), (0, 0, 0)))
    assert not is_dark(Image.new("RGB", (2, 2), (255, 255, 255)))


def test_encode_screenshot():
    shot = encode_screenshot("capture.jpg", make_png(color=(255, 255, 255)))

    assert shot.path == "capture.png"
    assert _decode(base64.b64decode(shot.base64_data)).format == "PNG"

    raw = encode_screenshot("notes.txt", b"plain text")
    assert raw.path == "notes.txt"
    assert base64.b64decode(raw.base64_data) == b"plain text"
