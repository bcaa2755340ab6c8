import io

import pytest
from PIL import Image, ImageStat

from submission_functions.exceptions import UnsupportedFormatError
from submission_functions.transforms import TransformChain, detected_content_type, load_image, watermark_geometry

from conftest import create_gradient_image, create_test_image


def open_output(data):
    return Image.open(io.BytesIO(data))


def exif_rotated_jpeg(width=200, height=100, orientation=6):
    img = Image.new('RGB', (width, height), color='blue')
    exif = Image.Exif()
    exif[0x0112] = orientation
    buffer = io.BytesIO()
    img.save(buffer, format='JPEG', exif=exif.tobytes())
    return buffer.getvalue()


class TestTransformChain:
    """Test cases for the enhancement chain"""

    def setup_method(self):
        self.chain = TransformChain()

    def test_output_is_jpeg(self, gradient_image):
        output = open_output(self.chain.render(gradient_image, []))
        assert output.format == 'JPEG'
        assert output.mode == 'RGB'

    def test_deterministic(self, gradient_image):
        """Same input and models give byte-identical output"""
        models = ['color_restore', 'dehaze', 'stabilize', 'superres']
        assert self.chain.render(gradient_image, models) == self.chain.render(gradient_image, models)

    def test_request_order_does_not_matter(self, gradient_image):
        first = self.chain.render(gradient_image, ['stabilize', 'color_restore'])
        second = self.chain.render(gradient_image, ['color_restore', 'stabilize'])
        assert first == second

    def test_unknown_model_is_noop(self, gradient_image):
        assert self.chain.render(gradient_image, ['not_a_real_model']) == self.chain.render(gradient_image, [])

    def test_duplicate_models_apply_once(self, gradient_image):
        assert self.chain.render(gradient_image, ['dehaze', 'dehaze']) == self.chain.render(gradient_image, ['dehaze'])

    @pytest.mark.parametrize('model', ['color_restore', 'dehaze', 'stabilize'])
    def test_each_effect_changes_pixels(self, gradient_image, model):
        assert self.chain.render(gradient_image, [model]) != self.chain.render(gradient_image, [])

    def test_superres_scales_width(self):
        """A 2000px wide upload comes back 3000px wide"""
        data = create_test_image(width=2000, height=100)
        output = open_output(self.chain.render(data, ['superres']))
        assert output.size == (3000, 150)

    def test_max_width_downscales_first(self):
        data = create_test_image(width=2000, height=1000)
        output = open_output(self.chain.render(data, [], max_width=1280))
        assert output.size == (1280, 640)

    def test_max_width_never_upscales(self):
        data = create_test_image(width=300, height=200)
        output = open_output(self.chain.render(data, [], max_width=1280))
        assert output.size == (300, 200)

    def test_superres_applies_after_max_width(self):
        data = create_test_image(width=2000, height=1000)
        output = open_output(self.chain.render(data, ['superres'], max_width=1000))
        assert output.width == 1500

    def test_exif_orientation_applied(self):
        output = open_output(self.chain.render(exif_rotated_jpeg(), []))
        assert output.size == (100, 200)

    def test_transparent_png_is_flattened(self):
        img = Image.new('RGBA', (50, 50), (255, 0, 0, 128))
        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        output = open_output(self.chain.render(buffer.getvalue(), []))
        assert output.mode == 'RGB'

    def test_watermark_darkens_bottom_band_only(self):
        data = create_test_image(width=400, height=300, color='white')
        plain = open_output(self.chain.render(data, []))
        marked = open_output(self.chain.render(data, [], watermark=True))

        assert marked.size == plain.size
        bar_height, _ = watermark_geometry(400)
        band = (0, 300 - bar_height + 4, 400, 300)
        plain_band = ImageStat.Stat(plain.crop(band).convert('L')).mean[0]
        marked_band = ImageStat.Stat(marked.crop(band).convert('L')).mean[0]
        assert plain_band - marked_band > 40

        top = (0, 0, 400, 200)
        assert ImageStat.Stat(marked.crop(top).convert('L')).mean[0] == pytest.approx(
            ImageStat.Stat(plain.crop(top).convert('L')).mean[0], abs=1
        )

    def test_corrupt_input(self):
        with pytest.raises(UnsupportedFormatError):
            self.chain.render(b'definitely not an image', [])

    def test_truncated_input(self):
        data = create_gradient_image()
        with pytest.raises(UnsupportedFormatError):
            load_image(data[:len(data) // 3])


class TestWatermarkGeometry:
    """Bar and font scale with width, with floors for small images"""

    def test_small_image_uses_minimums(self):
        assert watermark_geometry(100) == (40, 20)

    def test_large_image_scales(self):
        assert watermark_geometry(2000) == (120, 60)

    def test_font_floor(self):
        assert watermark_geometry(10)[1] >= 16


def test_detected_content_type_follows_decoded_bytes():
    assert detected_content_type(load_image(create_test_image(fmt='JPEG'))) == 'image/jpeg'
    assert detected_content_type(load_image(create_test_image(fmt='PNG'))) == 'image/png'
    assert detected_content_type(Image.new('RGB', (4, 4))) == 'application/octet-stream'
