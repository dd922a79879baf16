"""Turns a free-form product idea into catalog metadata and an image prompt."""
from __future__ import annotations

import json
import logging
from typing import Optional

import httpx

from itp_studio.schemas.contracts import CreateProductRequest, JsonContractHelper, NormalizedProduct
from itp_studio.services.prompts import PLACEMENT_PHRASES, STYLE_PHRASES

logger = logging.getLogger(__name__)

CATEGORY_NAMES = {
    "dtf-transfers": "DTF Transfers",
    "shirts": "Shirts",
    "hoodies": "Hoodies",
    "tumblers": "Tumblers",
}

DEFAULT_PRICE_CENTS = {
    "dtf-transfers": 999,
    "shirts": 2499,
    "hoodies": 4499,
    "tumblers": 2999,
}

SYSTEM_PROMPT = (
    "You are a witty product copywriter for a custom-print shop. Given a free-form idea, output normalized "
    "product metadata strictly as compact JSON with the fields category_slug (one of dtf-transfers, shirts, "
    "hoodies, tumblers), category_name, title (max 80 chars), summary (max 160 chars), description (2-4 funny "
    "sentences), tags (5-10), suggested_price_cents, mockup_style (flat|human), background (transparent|studio) "
    "and image_prompt (a detailed prompt describing only the artwork, never the garment, in the requested art "
    "style). Output only JSON."
)

_STOPWORDS = {"a", "an", "the", "with", "and", "of", "on", "in", "for", "to", "my"}


class ProductNormalizer:
    """Rule-based normalization, optionally refined by an LLM endpoint.

    The endpoint receives ``{"system": ..., "prompt": ...}`` and answers with
    JSON text (bare or fenced). Any endpoint failure falls back to the rules.
    """

    def __init__(self, endpoint_url: str = "", timeout_s: int = 60):
        self.endpoint_url = endpoint_url
        self.timeout_s = timeout_s

    def normalize(self, req: CreateProductRequest) -> NormalizedProduct:
        if self.endpoint_url:
            remote = self._normalize_remote(req)
            if remote is not None:
                return remote
        return self.normalize_locally(req)

    def normalize_locally(self, req: CreateProductRequest) -> NormalizedProduct:
        idea = req.prompt.splitlines()[0].strip()
        title = idea[:80].strip().title()
        words = [w.strip(".,!?:;\"'").lower() for w in idea.split()]
        tags = []
        for w in words:
            if w and w not in _STOPWORDS and w not in tags:
                tags.append(w)
        tags.extend(t for t in (req.category, req.image_style, req.product_type) if t not in tags)

        price = req.price_target if req.price_target is not None else DEFAULT_PRICE_CENTS[req.category]
        image_prompt = (
            f"{req.prompt}. {STYLE_PHRASES[req.image_style]}. "
            f"Composition suited for a {PLACEMENT_PHRASES[req.print_placement]} print on a {req.shirt_color} garment."
        )
        return NormalizedProduct(
            category_slug=req.category,
            category_name=CATEGORY_NAMES[req.category],
            title=title,
            summary=idea[:160],
            description=f"{title}. Printed to order, because the world needed exactly this.",
            tags=tags[:10],
            suggested_price_cents=price,
            mockup_style=req.mockup_style or "flat",
            background=req.background,
            image_prompt=image_prompt,
        )

    def _normalize_remote(self, req: CreateProductRequest) -> Optional[NormalizedProduct]:
        payload = {
            "system": SYSTEM_PROMPT,
            "prompt": json.dumps(req.model_dump(exclude={"model_ids"}), ensure_ascii=False),
        }
        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                resp = client.post(self.endpoint_url, json=payload)
                resp.raise_for_status()
            result = JsonContractHelper.parse_with_repair(resp.text, NormalizedProduct)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"Normalizer endpoint failed, using local rules: {exc}")
            return None
        logger.info(f"Product normalized remotely: {result.title!r} ({result.category_slug})")
        return result
