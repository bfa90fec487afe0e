import io
import unittest
from unittest import mock

from PIL import Image

from anigen.errors import ImagePreprocessError
from anigen.types import FramePayload
from anigen.utils.images import decode_frame, has_transparent_corners, preprocess_image, scaled_size

from fakes import png_bytes


def jpeg_bytes(size=(300, 200)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, (10, 200, 30)).save(buffer, format="JPEG")
    return buffer.getvalue()


class ScaledSizeTest(unittest.TestCase):
    def test_landscape_and_portrait(self) -> None:
        self.assertEqual(scaled_size(1024, 512, 512), (512, 256))
        self.assertEqual(scaled_size(300, 900, 450), (150, 450))

    def test_never_upscales(self) -> None:
        self.assertEqual(scaled_size(100, 40, 512), (100, 40))


class PreprocessTest(unittest.TestCase):
    def test_large_upload_is_downscaled_to_png(self) -> None:
        prepared = preprocess_image(png_bytes((1024, 512)))
        self.assertEqual((prepared.width, prepared.height), (512, 256))
        self.assertEqual(prepared.payload.mime_type, "image/png")
        self.assertEqual(decode_frame(prepared.payload).size, (512, 256))

    def test_jpeg_is_reencoded(self) -> None:
        prepared = preprocess_image(jpeg_bytes(), max_dimension=150)
        self.assertTrue(prepared.payload.data.startswith(b"\x89PNG"))
        self.assertEqual((prepared.width, prepared.height), (150, 100))
        self.assertFalse(prepared.has_transparency)

    def test_transparent_corners_detected(self) -> None:
        image = Image.new("RGBA", (20, 20), (0, 0, 0, 0))
        for x in range(5, 15):
            for y in range(5, 15):
                image.putpixel((x, y), (255, 255, 255, 255))
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")

        prepared = preprocess_image(buffer.getvalue())
        self.assertTrue(prepared.has_transparency)

    def test_single_opaque_corner_means_no_transparency(self) -> None:
        image = Image.new("RGBA", (10, 10), (0, 0, 0, 0))
        image.putpixel((9, 9), (0, 0, 0, 255))
        self.assertFalse(has_transparent_corners(image))
        self.assertFalse(has_transparent_corners(Image.new("RGB", (10, 10))))

    def test_empty_or_broken_input(self) -> None:
        with self.assertRaises(ImagePreprocessError):
            preprocess_image(b"")
        with self.assertRaises(ImagePreprocessError):
            preprocess_image(b"not an image at all")

    def test_oversized_upload_is_rejected(self) -> None:
        with mock.patch.object(Image, "MAX_IMAGE_PIXELS", 100):
            with self.assertRaises(ImagePreprocessError):
                preprocess_image(png_bytes((64, 48)))

    def test_decode_frame_returns_rgba(self) -> None:
        frame = FramePayload(jpeg_bytes((16, 8)), mime_type="image/jpeg")
        image = decode_frame(frame)
        self.assertEqual(image.mode, "RGBA")
        self.assertEqual(image.size, (16, 8))


if __name__ == "__main__":
    unittest.main()
