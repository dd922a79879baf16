"""Prompt builders for print-ready artwork and garment mockups."""
from __future__ import annotations

import re

from itp_studio.schemas.contracts import MockupInput, StyleOptions

_CARTOON_WORDS = re.compile(r"cartoon|animated|anime|illustration|comic|drawn|stylized|vector|flat|simple|cute|kawaii")

STYLE_PHRASES = {
    "realistic": "photorealistic style, detailed textures, natural lighting",
    "cartoon": "cartoon illustrated style, bold outlines, flat saturated colors",
    "semi-realistic": "semi-realistic digital art, balanced between photo and illustration",
}

PLACEMENT_PHRASES = {
    "front-center": "centered on the chest area",
    "left-pocket": "small, positioned on the left chest pocket area",
    "back-only": "large, centered on the back",
    "pocket-front-back-full": "small on the front left pocket and large on the back",
}

FABRIC_COLORS = {
    "black": "black",
    "white": "white",
    "gray": "heather gray",
    "color": "colored",
}

PRODUCT_NAMES = {
    "tshirt": "t-shirt",
    "hoodie": "hoodie",
    "tank": "tank top",
}


def build_print_prompt(prompt: str, style: StyleOptions) -> str:
    """Wrap the artwork prompt with print constraints for the chosen garment."""
    if style.image_style == "cartoon" or _CARTOON_WORDS.search(prompt.lower()):
        style_line = "STYLE: Create in a stylized cartoon illustration style."
    elif style.image_style == "semi-realistic":
        style_line = f"STYLE: {STYLE_PHRASES['semi-realistic']}."
    else:
        style_line = "STYLE: Hyper-realistic, photorealistic details, dramatic lighting, professional quality."

    parts = [
        f"CREATE THIS DESIGN: {prompt}\n\n{style_line}\n\nGenerate exactly what was described.",
    ]
    if style.background == "transparent":
        parts.append("OUTPUT: Isolated artwork on a transparent background. No garment or mockup, just the design. Centered, high resolution.")
    else:
        parts.append("OUTPUT: Artwork on a clean studio background. No garment or mockup, just the design. Centered, high resolution.")

    if style.shirt_color == "black":
        parts.append("COLORS: Avoid pure black. Use bright, vibrant colors.")
    elif style.shirt_color == "white":
        parts.append("COLORS: Avoid pure white. Use colors with good contrast.")

    if style.print_style == "halftone":
        parts.append("FINISH: Halftone dot texture suitable for screen-print look.")
    elif style.print_style == "grunge":
        parts.append("FINISH: Distressed grunge texture.")
    return "\n\n".join(parts)


def build_mockup_prompt(params: MockupInput) -> str:
    fabric = FABRIC_COLORS.get(params.shirt_color, "black")
    product = PRODUCT_NAMES.get(params.product_type, "t-shirt")
    placement = PLACEMENT_PHRASES.get(params.print_placement, PLACEMENT_PHRASES["front-center"])

    if params.template == "flat_lay":
        return (
            f"Create a professional flat lay product mockup: take the graphic design from the SECOND input image "
            f"and apply it {placement} on the {fabric} {product} shown in the FIRST input image. "
            "Make it look like a real printed DTF transfer. Do not modify or distort the design. "
            f"Preserve the {product}'s original {fabric} color. Professional studio lighting, clean background."
        )
    return (
        f"Create a lifestyle product mockup: the FIRST input image shows a model wearing a {fabric} {product}. "
        f"Apply the design from the SECOND input image {placement} on the {product}. "
        "The design should look like a real printed graphic on the fabric and be copied exactly. "
        "Natural lighting, lifestyle photography."
    )


def mockup_base_image(base_url: str, params: MockupInput) -> str:
    product = params.product_type if params.product_type in PRODUCT_NAMES else "tshirt"
    side = "back" if params.print_placement == "back-only" else "front"
    color = params.shirt_color if params.shirt_color in ("black", "white", "gray") else "black"
    return f"{base_url.rstrip('/')}/mockups/{product}-{color}-{side}.png"
