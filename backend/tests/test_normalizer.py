import httpx

from itp_studio.schemas.contracts import CreateProductRequest
from itp_studio.services.normalizer import ProductNormalizer


def test_local_rules():
    req = CreateProductRequest(prompt="A grumpy cat on a red mug\nextra notes", category="tumblers", price_target=1500)
    result = ProductNormalizer().normalize(req)
    assert result.title == "A Grumpy Cat On A Red Mug"
    assert result.category_name == "Tumblers"
    assert result.suggested_price_cents == 1500
    assert "grumpy" in result.tags and "tumblers" in result.tags
    assert result.image_prompt.startswith(req.prompt)


def test_remote_answer_is_used(monkeypatch):
    body = '```json\n{"title": "Grumpy Cat Mug", "image_prompt": "a grumpy cat", "category_slug": "tumblers"}\n```'

    def fake_post(self, url, **kwargs):
        return httpx.Response(200, text=body, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.Client, "post", fake_post)
    result = ProductNormalizer("http://llm.test/normalize").normalize(CreateProductRequest(prompt="grumpy cat"))
    assert result.title == "Grumpy Cat Mug"


def test_remote_failure_falls_back(monkeypatch):
    def fake_post(self, url, **kwargs):
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(httpx.Client, "post", fake_post)
    result = ProductNormalizer("http://llm.test/normalize").normalize(CreateProductRequest(prompt="grumpy cat"))
    assert result.title == "Grumpy Cat"
