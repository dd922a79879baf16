from itp_studio.utils.slug import generate_unique_slug, slugify


def test_slugify():
    assert slugify("Red Mug: Extra Spicy!") == "red-mug-extra-spicy"
    assert slugify("!!!") == "product"


def test_unique_slug_counts_up():
    assert generate_unique_slug("red-mug", []) == "red-mug"
    assert generate_unique_slug("red-mug", ["red-mug", "red-mug-2"]) == "red-mug-3"
