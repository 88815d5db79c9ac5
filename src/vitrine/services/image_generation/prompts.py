"""Prompt profiles and prompt assembly for product photos.

Built-in profiles cover every background style; an active prompt_profiles row for the
same style takes precedence.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from vitrine.models.job import BackgroundStyle, MannequinMode, ProductCategory

MAX_CUSTOM_PROMPT_LENGTH = 1000


@dataclass
class PromptProfileSpec:
    style: str
    name: str
    prompt: str
    negative_prompt: str
    params: dict[str, Any] = field(default_factory=dict)


DEFAULT_PROMPTS: dict[str, PromptProfileSpec] = {
    BackgroundStyle.STUDIO_WHITE.value: PromptProfileSpec(
        style="studio_white",
        name="Studio Blanc Pro",
        prompt=(
            "Professional product photography on pure white background, soft studio lighting, "
            "high-end commercial quality, clean and minimal, fashion e-commerce style"
        ),
        negative_prompt="shadows, colored background, busy background, low quality, blurry, watermark, text",
        params={"guidance_scale": 7.5, "num_inference_steps": 30},
    ),
    BackgroundStyle.STUDIO_GRAY.value: PromptProfileSpec(
        style="studio_gray",
        name="Studio Gris Élégant",
        prompt=(
            "Professional product photography on neutral gray background, soft diffused lighting, "
            "elegant commercial style, fashion catalog quality"
        ),
        negative_prompt="harsh shadows, colored background, busy background, low quality, watermark",
        params={"guidance_scale": 7.5, "num_inference_steps": 30},
    ),
    BackgroundStyle.GRADIENT_SOFT.value: PromptProfileSpec(
        style="gradient_soft",
        name="Dégradé Doux",
        prompt=(
            "Product photography with soft gradient background, professional lighting, "
            "modern aesthetic, clean fashion presentation"
        ),
        negative_prompt="harsh colors, busy background, low quality, watermark",
        params={"guidance_scale": 7.0, "num_inference_steps": 25},
    ),
    BackgroundStyle.STUDIO_CLEAN_WHITE.value: PromptProfileSpec(
        style="studio_clean_white",
        name="Studio Clean White",
        prompt=(
            "Ultra clean white background product photography, perfect studio lighting, "
            "high-end fashion e-commerce, crisp details, professional catalog style, "
            "no shadows on background"
        ),
        negative_prompt=(
            "shadows on background, gray tones, colored background, busy background, "
            "low quality, blurry, watermark, text, artifacts"
        ),
        params={"guidance_scale": 8.0, "num_inference_steps": 35},
    ),
    BackgroundStyle.LUXURY_MARBLE_VELVET.value: PromptProfileSpec(
        style="luxury_marble_velvet",
        name="Luxe Marbre & Velours",
        prompt=(
            "Luxury product photography on elegant marble surface with velvet fabric accents, "
            "sophisticated studio lighting, high-end boutique aesthetic, premium fashion "
            "presentation, rich textures"
        ),
        negative_prompt=(
            "cheap looking, plastic, low quality, blurry, watermark, text, busy background, cluttered"
        ),
        params={"guidance_scale": 7.5, "num_inference_steps": 35},
    ),
    BackgroundStyle.BOUTIQUE_CLEAN_STORE.value: PromptProfileSpec(
        style="boutique_clean_store",
        name="Boutique Propre",
        prompt=(
            "Clean boutique store setting, minimalist retail display, soft natural lighting, "
            "modern fashion store aesthetic, light neutral background, professional retail photography"
        ),
        negative_prompt=(
            "cluttered, messy, dark, low quality, blurry, watermark, text, busy background, people"
        ),
        params={"guidance_scale": 7.0, "num_inference_steps": 30},
    ),
}

CATEGORY_CONTEXT: dict[str, str] = {
    ProductCategory.CLOTHING.value: "fashion clothing item, apparel",
    ProductCategory.BEAUTY.value: "beauty product, cosmetics",
    ProductCategory.ACCESSORIES.value: "fashion accessory",
    ProductCategory.SHOES.value: "footwear, shoes",
    ProductCategory.JEWELRY.value: "jewelry, fine accessories",
    ProductCategory.BAGS.value: "handbag, fashion bag",
}

MANNEQUIN_CONTEXT: dict[str, str] = {
    MannequinMode.GHOST_MANNEQUIN.value: "presented on an invisible ghost mannequin, natural garment volume",
    MannequinMode.CUSTOM.value: "worn by the provided custom mannequin, consistent body proportions",
    MannequinMode.VIRTUAL_MODEL_FEMALE.value: "worn by a professional female model, natural pose",
    MannequinMode.VIRTUAL_MODEL_MALE.value: "worn by a professional male model, natural pose",
}


def validate_prompt(prompt: str) -> str:
    """Validate a user-supplied prompt.

    Returns:
        The prompt stripped of surrounding whitespace

    Raises:
        ValueError: If prompt is empty or exceeds 1000 characters
    """
    if not prompt or not prompt.strip():
        raise ValueError("Prompt cannot be empty")

    prompt = prompt.strip()
    if len(prompt) > MAX_CUSTOM_PROMPT_LENGTH:
        raise ValueError(
            f"Prompt exceeds maximum length of {MAX_CUSTOM_PROMPT_LENGTH} characters (got {len(prompt)})"
        )
    return prompt


def default_profile(style: str) -> PromptProfileSpec:
    return DEFAULT_PROMPTS.get(style, DEFAULT_PROMPTS[BackgroundStyle.STUDIO_WHITE.value])


def build_full_prompt(
    base_prompt: str, category: str, additional_context: Optional[str] = None
) -> str:
    """Prefix the category context and append optional extra context."""
    full_prompt = base_prompt
    category_context = CATEGORY_CONTEXT.get(category, "product")
    if category_context:
        full_prompt = f"{category_context}, {base_prompt}"
    if additional_context:
        full_prompt = f"{full_prompt}, {additional_context}"
    return full_prompt


def build_generation_prompt(
    profile: PromptProfileSpec,
    category: str,
    mannequin_mode: str,
    custom_prompt: Optional[str] = None,
) -> str:
    """Final prompt for a job. A custom prompt replaces the style-derived base prompt."""
    base_prompt = custom_prompt if custom_prompt else profile.prompt
    return build_full_prompt(base_prompt, category, MANNEQUIN_CONTEXT.get(mannequin_mode))
