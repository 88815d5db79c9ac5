"""Template compositor: lays a product image and text overlays into an export frame.

Three layouts (A, B, C) define placement rectangles as functions of the target size,
so one layout serves every export format.

Layout A: product centered, price bottom-left, handle bottom-right, badge top-right
Layout B: product top, price and handle bottom-center, badge top-left
Layout C: product inset, price and handle left, badge top-center
"""

from dataclasses import dataclass
from typing import Any, Optional

from PIL import Image, ImageDraw, ImageFont, ImageOps

from vitrine.models.job import TemplateLayout
from vitrine.services.imaging.renditions import fit_cover

DEFAULT_CURRENCY = "FCFA"
DEFAULT_CANVAS_COLOR = "#FFFFFF"


@dataclass(frozen=True)
class Placement:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class TemplatePlacements:
    product: Placement
    price: Placement
    handle: Placement
    badge: Placement


@dataclass(frozen=True)
class TextStyle:
    font_size: int
    color: str


TEXT_STYLES = {
    "price": TextStyle(font_size=36, color="#FFFFFF"),
    "handle": TextStyle(font_size=20, color="#FFFFFF"),
    "badge": TextStyle(font_size=16, color="#FFD700"),
}

SHADOW_OFFSET = 2
SHADOW_COLOR = (0, 0, 0, 128)


@dataclass
class Overlays:
    """Optional text placed over the composed image."""

    price: Optional[int] = None
    currency: str = DEFAULT_CURRENCY
    handle: Optional[str] = None
    badge: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "Overlays":
        data = data or {}
        return cls(
            price=data.get("price"),
            currency=data.get("currency") or DEFAULT_CURRENCY,
            handle=data.get("handle"),
            badge=data.get("badge"),
        )

    @property
    def is_empty(self) -> bool:
        return self.price is None and not (self.handle or self.badge)


def format_price(amount: int, currency: str = DEFAULT_CURRENCY) -> str:
    """Group thousands with a space: 12000 -> '12 000 FCFA'."""
    return f"{amount:,}".replace(",", " ") + f" {currency}"


def get_template_placements(template: TemplateLayout, width: int, height: int) -> TemplatePlacements:
    """Placement rectangles for a layout at the given frame size."""
    is_portrait = height > width
    padding = int(width * 0.05)

    if template == TemplateLayout.A:
        return TemplatePlacements(
            product=Placement(
                x=padding,
                y=int(height * 0.15) if is_portrait else padding,
                width=width - padding * 2,
                height=int(height * 0.6) if is_portrait else height - padding * 2 - 100,
            ),
            price=Placement(x=padding, y=height - padding - 60, width=int(width * 0.4), height=50),
            handle=Placement(
                x=width - padding - int(width * 0.35),
                y=height - padding - 40,
                width=int(width * 0.35),
                height=30,
            ),
            badge=Placement(x=width - padding - 120, y=padding, width=120, height=40),
        )

    if template == TemplateLayout.B:
        return TemplatePlacements(
            product=Placement(
                x=padding,
                y=padding,
                width=width - padding * 2,
                height=int(height * 0.65) if is_portrait else int(height * 0.7),
            ),
            price=Placement(
                x=int(width * 0.3), y=height - padding - 100, width=int(width * 0.4), height=50
            ),
            handle=Placement(
                x=int(width * 0.3), y=height - padding - 40, width=int(width * 0.4), height=30
            ),
            badge=Placement(x=padding, y=padding, width=120, height=40),
        )

    return TemplatePlacements(
        product=Placement(
            x=int(width * 0.1),
            y=int(height * 0.2) if is_portrait else padding,
            width=int(width * 0.8),
            height=int(height * 0.55) if is_portrait else height - padding * 2 - 120,
        ),
        price=Placement(
            x=padding,
            y=height - padding - 150 if is_portrait else height - padding - 80,
            width=int(width * 0.5),
            height=50,
        ),
        handle=Placement(x=padding, y=height - padding - 40, width=int(width * 0.4), height=30),
        badge=Placement(x=int(width * 0.4), y=padding, width=int(width * 0.2), height=40),
    )


def _draw_text(layer: Image.Image, text: str, placement: Placement, kind: str) -> None:
    style = TEXT_STYLES[kind]
    font = ImageFont.load_default(size=style.font_size)
    draw = ImageDraw.Draw(layer)
    baseline = (placement.x, placement.y + int(placement.height * 0.7))
    shadow = (baseline[0] + SHADOW_OFFSET, baseline[1] + SHADOW_OFFSET)
    draw.text(shadow, text, font=font, fill=SHADOW_COLOR, anchor="ls")
    draw.text(baseline, text, font=font, fill=style.color, anchor="ls")


def compose(
    product: Image.Image,
    template: TemplateLayout,
    overlays: Overlays,
    width: int,
    height: int,
    background: Optional[Image.Image] = None,
) -> Image.Image:
    """Compose one export frame.

    Args:
        product: Product image, fitted inside its placement rectangle and centered
        template: Layout variant
        overlays: Price, handle and badge text (all optional)
        width: Frame width in pixels
        height: Frame height in pixels
        background: Frame background, cover-fitted; a plain white canvas when None

    Returns:
        RGB image of exactly width x height
    """
    if background is not None:
        canvas = fit_cover(background, width, height).convert("RGBA")
    else:
        canvas = Image.new("RGBA", (width, height), DEFAULT_CANVAS_COLOR)

    placements = get_template_placements(template, width, height)

    area = placements.product
    fitted = ImageOps.contain(product.convert("RGBA"), (area.width, area.height))
    left = area.x + (area.width - fitted.width) // 2
    top = area.y + (area.height - fitted.height) // 2
    canvas.alpha_composite(fitted, (left, top))

    if not overlays.is_empty:
        text_layer = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        if overlays.price is not None:
            _draw_text(text_layer, format_price(overlays.price, overlays.currency), placements.price, "price")
        if overlays.handle:
            _draw_text(text_layer, f"@{overlays.handle.lstrip('@')}", placements.handle, "handle")
        if overlays.badge:
            _draw_text(text_layer, overlays.badge, placements.badge, "badge")
        canvas.alpha_composite(text_layer)

    return canvas.convert("RGB")
