from itp_studio.schemas.contracts import MockupInput, StyleOptions
from itp_studio.services.prompts import build_mockup_prompt, build_print_prompt, mockup_base_image


def test_print_prompt_detects_cartoon_words():
    prompt = build_print_prompt("a cute kawaii cat", StyleOptions(image_style="realistic"))
    assert "cartoon illustration" in prompt


def test_print_prompt_colour_rules():
    assert "Avoid pure black" in build_print_prompt("red mug", StyleOptions(shirt_color="black"))
    assert "Avoid pure white" in build_print_prompt("red mug", StyleOptions(shirt_color="white"))
    assert "studio background" in build_print_prompt("red mug", StyleOptions(background="studio"))


def test_mockup_prompts_per_template():
    params = MockupInput(template="flat_lay", source_asset_id=1, garment_image_url="x", shirt_color="gray")
    assert "flat lay" in build_mockup_prompt(params)
    assert "heather gray" in build_mockup_prompt(params)
    lifestyle = params.model_copy(update={"template": "lifestyle"})
    assert "lifestyle" in build_mockup_prompt(lifestyle)


def test_mockup_base_image_side():
    params = MockupInput(
        template="flat_lay", source_asset_id=1, garment_image_url="x", product_type="hoodie", print_placement="back-only"
    )
    assert mockup_base_image("https://shop.test/", params) == "https://shop.test/mockups/hoodie-black-back.png"
