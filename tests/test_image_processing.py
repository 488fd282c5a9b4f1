import asyncio
import os
import shutil
import tempfile
import time
import unittest
from unittest.mock import patch

import numpy as np
from PIL import Image

from schemas.enhancement_schemas import EnhancementLevel, EnhancementParameters
from services import image_processing
from conftest import write_image


class TestImageProcessing(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.jpeg_path = write_image(os.path.join(self.temp_dir, "dish.jpg"), "JPEG", size=(120, 80))
        self.png_path = write_image(os.path.join(self.temp_dir, "dish.png"), "PNG", size=(50, 40))
        self.webp_path = write_image(os.path.join(self.temp_dir, "dish.webp"), "WEBP", size=(30, 30))
        self.gif_path = write_image(os.path.join(self.temp_dir, "dish.gif"), "GIF", size=(20, 20))
        self.output_path = os.path.join(self.temp_dir, "out", "enhanced.jpg")

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    # --- Format detection ---

    def test_detect_format_supported(self):
        self.assertEqual(image_processing.detect_format(self.jpeg_path), "jpeg")
        self.assertEqual(image_processing.detect_format(self.png_path), "png")
        self.assertEqual(image_processing.detect_format(self.webp_path), "webp")

    def test_detect_format_ignores_extension(self):
        misnamed = os.path.join(self.temp_dir, "actually_png.jpg")
        shutil.copy(self.png_path, misnamed)
        self.assertEqual(image_processing.detect_format(misnamed), "png")

    def test_detect_format_gif_is_unsupported(self):
        with self.assertRaises(image_processing.UnsupportedFormat):
            image_processing.detect_format(self.gif_path)

    def test_detect_format_garbage_is_unsupported(self):
        garbage = os.path.join(self.temp_dir, "notes.jpg")
        with open(garbage, "wb") as f:
            f.write(b"definitely not an image")
        with self.assertRaises(image_processing.UnsupportedFormat):
            image_processing.detect_format(garbage)

    def test_detect_format_missing_file(self):
        with self.assertRaises(image_processing.InputNotFound):
            image_processing.detect_format(os.path.join(self.temp_dir, "missing.jpg"))

    # --- Loading ---

    def test_load_image_pil_flattens_transparency_on_white(self):
        transparent = write_image(os.path.join(self.temp_dir, "alpha.png"), "PNG", size=(10, 10), color=(0, 0, 0, 0))
        img = image_processing.load_image_pil(transparent)
        self.assertEqual(img.mode, "RGB")
        self.assertEqual(img.getpixel((5, 5)), (255, 255, 255))

    # --- Parameters ---

    def test_resolve_parameters_preset_and_overrides(self):
        params = image_processing.resolve_parameters(EnhancementLevel.HIGH, {"brightness": 1.4, "contrast": None})
        self.assertEqual(params.brightness, 1.4)
        self.assertEqual(params.contrast, 1.3)
        self.assertEqual(params.saturation, 1.5)
        self.assertEqual(params.sharpen, 1.5)

    def test_resolve_parameters_without_level_uses_fallback(self):
        params = image_processing.resolve_parameters()
        self.assertEqual(params.brightness, 1.15)
        self.assertEqual(params.contrast, 1.25)
        self.assertEqual(params.saturation, 1.35)
        self.assertEqual(params.sharpen, 1.0)

    def test_resolve_parameters_clamps_overrides(self):
        params = image_processing.resolve_parameters(EnhancementLevel.LOW, {"brightness": 7.0, "saturation": 0.1})
        self.assertEqual(params.brightness, 3.0)
        self.assertEqual(params.saturation, 0.5)

    def test_auto_preset_normalizes(self):
        self.assertTrue(image_processing.resolve_parameters(EnhancementLevel.AUTO).normalize)
        self.assertFalse(image_processing.resolve_parameters(EnhancementLevel.MEDIUM).normalize)

    def test_every_preset_resolves(self):
        for level, preset in image_processing.ENHANCEMENT_PRESETS.items():
            params = image_processing.resolve_parameters(level)
            self.assertEqual(params.normalize, preset.get("normalize", False))
            self.assertEqual(params.sharpen, preset["sharpen"])

    # --- Lookup tables ---

    def test_contrast_lut_keeps_midtone(self):
        for contrast in (0.5, 1.3, 2.0, 3.0):
            lut = image_processing.contrast_lut(contrast)
            self.assertEqual(int(lut[128]), 128)
            self.assertEqual(lut.dtype, np.uint8)

    def test_contrast_lut_saturates_extremes(self):
        lut = image_processing.contrast_lut(3.0)
        self.assertEqual(int(lut[0]), 0)
        self.assertEqual(int(lut[255]), 255)

    def test_exposure_lut_brightens_for_positive_stops(self):
        lut = image_processing.exposure_lut(1.0)
        self.assertGreater(int(lut[64]), 64)
        self.assertEqual(int(lut[0]), 0)
        self.assertEqual(int(lut[255]), 255)

    def test_apply_warmth_shifts_red_and_blue(self):
        img = Image.new("RGB", (4, 4), (100, 100, 100))
        warm = image_processing.apply_warmth(img, 100).getpixel((0, 0))
        cool = image_processing.apply_warmth(img, -100).getpixel((0, 0))
        self.assertGreater(warm[0], 100)
        self.assertLess(warm[2], 100)
        self.assertLess(cool[0], 100)
        self.assertGreater(cool[2], 100)

    def test_apply_warmth_zero_is_identity(self):
        img = Image.new("RGB", (4, 4), (100, 100, 100))
        self.assertIs(image_processing.apply_warmth(img, 0), img)

    # --- Full pipeline ---

    def test_render_keeps_dimensions_and_outputs_jpeg(self):
        data, size = image_processing.render_enhanced_image(self.jpeg_path, image_processing.resolve_parameters(EnhancementLevel.MEDIUM))
        self.assertEqual(size, (120, 80))
        self.assertTrue(data.startswith(b"\xff\xd8"))

    def test_render_with_identity_parameters_keeps_colors_close(self):
        data, _ = image_processing.render_enhanced_image(self.png_path, EnhancementParameters())
        output = os.path.join(self.temp_dir, "identity.jpg")
        with open(output, "wb") as f:
            f.write(data)
        with Image.open(output) as img:
            pixel = img.convert("RGB").getpixel((25, 20))
        for actual, expected in zip(pixel, (180, 120, 60)):
            self.assertLessEqual(abs(actual - expected), 3)

    def test_run_filter_pipeline_writes_output(self):
        params = image_processing.resolve_parameters(EnhancementLevel.AUTO)
        dimensions = asyncio.run(image_processing.run_filter_pipeline(self.webp_path, self.output_path, params))
        self.assertEqual(dimensions, (30, 30))
        self.assertEqual(image_processing.detect_format(self.output_path), "jpeg")
        self.assertEqual(image_processing.read_dimensions(self.output_path), (30, 30))

    def test_run_filter_pipeline_on_own_output_keeps_dimensions(self):
        params = image_processing.resolve_parameters(EnhancementLevel.HIGH)
        asyncio.run(image_processing.run_filter_pipeline(self.jpeg_path, self.output_path, params))
        second_output = os.path.join(self.temp_dir, "out", "enhanced_twice.jpg")
        asyncio.run(image_processing.run_filter_pipeline(self.output_path, second_output, params))
        self.assertEqual(image_processing.read_dimensions(second_output), (120, 80))

    def test_run_filter_pipeline_is_deterministic(self):
        params = image_processing.resolve_parameters(EnhancementLevel.MEDIUM, {"brightness": 1.3})
        second_output = os.path.join(self.temp_dir, "out", "enhanced_again.jpg")
        asyncio.run(image_processing.run_filter_pipeline(self.png_path, self.output_path, params))
        asyncio.run(image_processing.run_filter_pipeline(self.png_path, second_output, params))
        self.assertEqual(os.path.getsize(self.output_path), os.path.getsize(second_output))

    def test_run_filter_pipeline_unsupported_input(self):
        with self.assertRaises(image_processing.UnsupportedFormat):
            asyncio.run(image_processing.run_filter_pipeline(self.gif_path, self.output_path, EnhancementParameters()))
        self.assertFalse(os.path.exists(self.output_path))

    def test_run_filter_pipeline_timeout_leaves_no_output(self):
        def slow_render(image_path, params):
            time.sleep(0.5)
            return b"late", (1, 1)

        with patch("services.image_processing.render_enhanced_image", side_effect=slow_render):
            with self.assertRaises(image_processing.FilterTimeout):
                asyncio.run(image_processing.run_filter_pipeline(
                    self.jpeg_path, self.output_path, EnhancementParameters(), timeout=0.05
                ))
        self.assertFalse(os.path.exists(self.output_path))

    # --- Output ---

    def test_write_output_leaves_no_partial_files(self):
        image_processing.write_output(self.output_path, b"\xff\xd8data")
        leftovers = [name for name in os.listdir(os.path.dirname(self.output_path)) if name.endswith(".part")]
        self.assertEqual(leftovers, [])
        self.assertTrue(os.path.exists(self.output_path))

    def test_write_output_empty_data_fails(self):
        with self.assertRaises(image_processing.OutputWriteFailed):
            image_processing.write_output(self.output_path, b"")

    def test_save_image_bytes_rejects_non_image(self):
        with self.assertRaises(image_processing.UnsupportedFormat):
            image_processing.save_image_bytes(b"<html>error</html>", self.output_path)
        self.assertFalse(os.path.exists(self.output_path))

    def test_create_thumbnail(self):
        thumb_path = os.path.join(self.temp_dir, "thumb.jpg")
        image_processing.create_thumbnail(self.jpeg_path, thumb_path, size=(32, 32))
        self.assertEqual(image_processing.read_dimensions(thumb_path), (32, 32))


if __name__ == '__main__':
    unittest.main()
