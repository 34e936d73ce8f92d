"""
SongCard - Drawing Surface Tests

Tests for songcard/services/surface.py. Validates:
- Rect fills, opacity and off-canvas image placement
- Rounded-rect clipping restores the previous clip on exit
- Linear gradients interpolate between stops along the line
- Blur, text measurement and PNG export
"""

from io import BytesIO

from PIL import Image

from songcard.services.surface import PillowSurface, load_font


class TestPillowSurface:
    def test_starts_transparent(self):
        surface = PillowSurface(10, 10)
        assert surface.pixel(0, 0) == (0, 0, 0, 0)

    def test_fill_rect(self):
        surface = PillowSurface(20, 20)
        surface.fill_rect(5, 5, 10, 10, "#ff0000")
        assert surface.pixel(5, 5) == (255, 0, 0, 255)
        assert surface.pixel(14, 14) == (255, 0, 0, 255)
        assert surface.pixel(15, 15) == (0, 0, 0, 0)

    def test_clear(self):
        surface = PillowSurface(4, 4)
        surface.fill_rect(0, 0, 4, 4, "white")
        surface.clear()
        assert surface.pixel(1, 1) == (0, 0, 0, 0)

    def test_clip_limits_drawing(self):
        surface = PillowSurface(100, 100)
        with surface.clip_rounded_rect(0, 0, 100, 100, 30):
            surface.fill_rect(0, 0, 100, 100, "#00ff00")
        assert surface.pixel(0, 0) == (0, 0, 0, 0)
        assert surface.pixel(50, 50) == (0, 255, 0, 255)

    def test_clip_restored_after_block(self):
        surface = PillowSurface(50, 50)
        with surface.clip_rounded_rect(10, 10, 10, 10, 0):
            pass
        surface.fill_rect(0, 0, 50, 50, "#0000ff")
        assert surface.pixel(0, 0) == (0, 0, 255, 255)

    def test_draw_image_with_negative_offset(self):
        surface = PillowSurface(10, 10)
        surface.draw_image(Image.new("RGBA", (20, 20), (9, 9, 9, 255)), -5, -5, 20, 20)
        assert surface.pixel(0, 0) == (9, 9, 9, 255)
        assert surface.pixel(9, 9) == (9, 9, 9, 255)

    def test_draw_image_opacity(self):
        surface = PillowSurface(4, 4)
        surface.draw_image(Image.new("RGBA", (4, 4), (255, 255, 255, 255)), 0, 0, 4, 4, 0.5)
        assert surface.pixel(0, 0)[3] in (127, 128)

    def test_draw_surface(self):
        base = PillowSurface(8, 8)
        layer = base.new_layer()
        layer.fill_rect(0, 0, 8, 8, "#123456")
        base.draw_surface(layer)
        assert base.pixel(3, 3) == (0x12, 0x34, 0x56, 255)

    def test_vertical_gradient(self):
        surface = PillowSurface(4, 100)
        surface.fill_gradient((0, 0), (0, 100), [(0.0, "#000000"), (1.0, "#ffffff")])
        top, middle, bottom = (surface.pixel(0, y)[0] for y in (0, 50, 99))
        assert top < 5
        assert 120 <= middle <= 135
        assert bottom > 250

    def test_gradient_stop_order_does_not_matter(self):
        first = PillowSurface(2, 50)
        second = PillowSurface(2, 50)
        stops = [(0.0, "#ff0000"), (1.0, "#0000ff")]
        first.fill_gradient((0, 0), (0, 50), stops)
        second.fill_gradient((0, 0), (0, 50), list(reversed(stops)))
        assert first.pixel(0, 25) == second.pixel(0, 25)

    def test_blur_softens_edges(self):
        surface = PillowSurface(40, 40)
        surface.fill_rect(0, 0, 20, 40, "#ffffff")
        surface.blur(4)
        edge = surface.pixel(20, 20)
        assert 0 < edge[3] < 255

    def test_measure_text(self):
        surface = PillowSurface(10, 10)
        font = load_font(20)
        assert surface.measure_text("", font) == 0
        assert surface.measure_text("abcd", font) > surface.measure_text("ab", font)

    def test_font_size_zero_falls_back_to_one_pixel(self):
        surface = PillowSurface(20, 20)
        font = load_font(0)
        surface.draw_text("a", 2, 2, font, "#ffffff")
        assert surface.measure_text("a", font) >= 0

    def test_draw_text_paints_pixels(self):
        surface = PillowSurface(200, 60)
        surface.draw_text("Hello", 10, 10, load_font(32, bold=True), "#ffffff")
        assert surface.image.getbbox() is not None

    def test_to_png(self):
        surface = PillowSurface(3, 2)
        png = surface.to_png()
        assert Image.open(BytesIO(png)).size == (3, 2)
