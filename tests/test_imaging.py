"""Raster operation and template compositor tests."""

import io

import pytest
from PIL import Image

from conftest import make_jpeg, make_png
from vitrine.models.job import TemplateLayout
from vitrine.services.exceptions import NonRetryableError
from vitrine.services.imaging.compositor import (
    Overlays,
    compose,
    format_price,
    get_template_placements,
)
from vitrine.services.imaging.renditions import (
    encode_webp,
    fit_cover,
    make_thumbnail,
    open_image,
    placeholder_image,
    preprocess,
)


def test_format_price_groups_thousands():
    assert format_price(12000) == "12 000 FCFA"
    assert format_price(1500000, "XOF") == "1 500 000 XOF"
    assert format_price(500) == "500 FCFA"


def test_overlays_from_dict_defaults_currency():
    overlays = Overlays.from_dict({"price": 2500, "handle": "@boutique"})
    assert overlays.currency == "FCFA"
    assert not overlays.is_empty
    assert Overlays.from_dict(None).is_empty


@pytest.mark.parametrize("template", list(TemplateLayout))
@pytest.mark.parametrize("size", [(1080, 1920), (1080, 1080)])
def test_placements_stay_inside_frame(template, size):
    width, height = size
    placements = get_template_placements(template, width, height)

    for placement in (placements.product, placements.price, placements.handle, placements.badge):
        assert placement.x >= 0 and placement.y >= 0
        assert placement.x + placement.width <= width
        assert placement.y + placement.height <= height


def test_layout_a_portrait_product_area():
    placements = get_template_placements(TemplateLayout.A, 1080, 1920)
    assert placements.product.y == int(1920 * 0.15)
    assert placements.product.height == int(1920 * 0.6)
    assert placements.badge.x == 1080 - 54 - 120


@pytest.mark.parametrize("template", list(TemplateLayout))
def test_compose_produces_exact_frame(template):
    product = Image.new("RGB", (300, 500), "#884422")
    frame = compose(
        product,
        template,
        Overlays(price=12000, handle="shop", badge="NEW"),
        1080,
        1920,
        background=Image.new("RGB", (800, 800), "#dddddd"),
    )
    assert frame.size == (1080, 1920)
    assert frame.mode == "RGB"


def test_compose_without_overlays_keeps_white_canvas():
    product = Image.new("RGB", (100, 100), "#000000")
    frame = compose(product, TemplateLayout.B, Overlays(), 400, 400)
    assert frame.getpixel((399, 399)) == (255, 255, 255)


def test_zero_price_is_rendered():
    overlays = Overlays.from_dict({"price": 0})
    assert not overlays.is_empty

    product = Image.new("RGB", (100, 100), "#000000")
    area = get_template_placements(TemplateLayout.A, 400, 400).price
    box = (area.x, area.y, area.x + area.width, area.y + area.height)
    with_price = compose(product, TemplateLayout.A, overlays, 400, 400).crop(box)
    without = compose(product, TemplateLayout.A, Overlays(), 400, 400).crop(box)
    assert with_price.tobytes() != without.tobytes()


def test_open_image_rejects_garbage():
    with pytest.raises(NonRetryableError) as exc_info:
        open_image(b"not an image")
    assert exc_info.value.error_code == "BAD_IMAGE"


def test_preprocess_bounds_portrait_and_never_upscales():
    portrait = preprocess(make_jpeg(1536, 2048))
    assert (portrait.width, portrait.height) == (768, 1024)
    assert portrait.content_type == "image/jpeg"

    small = preprocess(make_png(200, 100))
    assert (small.width, small.height) == (200, 100)


def test_fit_cover_and_thumbnail_sizes():
    image = Image.new("RGB", (640, 480), "#123456")
    assert fit_cover(image, 1080, 1920).size == (1080, 1920)
    assert make_thumbnail(image, 256).size == (256, 256)


def test_encode_webp_targets_size():
    encoded = encode_webp(Image.new("RGB", (1080, 1080), "#abcdef"))

    assert encoded.content_type == "image/webp"
    assert encoded.size_kb <= 300
    assert encoded.quality == 85
    assert Image.open(io.BytesIO(encoded.data)).format == "WEBP"


def test_placeholder_is_solid_color():
    image = open_image(placeholder_image("#10b981", 32, 32))
    assert image.size == (32, 32)
    assert image.getpixel((16, 16)) == (16, 185, 129)
