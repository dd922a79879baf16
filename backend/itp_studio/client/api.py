from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from itp_studio.core.errors import ConflictError, NotFoundError, PromptValidationError, StudioError

_ERRORS = {400: PromptValidationError, 404: NotFoundError, 409: ConflictError, 422: PromptValidationError}


class StudioClient:
    """Thin httpx wrapper over the ``/ai`` endpoints.

    Error responses are raised as the matching :class:`StudioError` so callers
    can show ``exc.message`` as is.
    """

    def __init__(self, base_url: str = "http://127.0.0.1:8000", timeout_s: float = 30, client: Optional[httpx.Client] = None):
        self.http = client or httpx.Client(base_url=base_url, timeout=timeout_s)

    def close(self) -> None:
        self.http.close()

    def create_product(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/ai/products", json=payload)

    def status(self, product_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/ai/products/{product_id}/status")

    def remove_background(self, product_id: int, asset_id: Optional[int] = None) -> Dict[str, Any]:
        return self._request("POST", f"/ai/products/{product_id}/remove-background", json={"asset_id": asset_id})

    def create_mockups(
        self, product_id: int, asset_id: Optional[int] = None, skip_background_removal: bool = False
    ) -> Dict[str, Any]:
        body = {"asset_id": asset_id, "skip_background_removal": skip_background_removal}
        return self._request("POST", f"/ai/products/{product_id}/mockups", json=body)

    def select_image(self, product_id: int, asset_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/ai/products/{product_id}/select-image", json={"asset_id": asset_id})

    def regenerate(self, product_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/ai/products/{product_id}/regenerate")

    def upscale(self, product_id: int, asset_id: Optional[int] = None) -> Dict[str, Any]:
        return self._request("POST", f"/ai/products/{product_id}/upscale", json={"asset_id": asset_id})

    def approve(self, product_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/ai/products/{product_id}/approve")

    def delete_asset(self, product_id: int, asset_id: int) -> Dict[str, Any]:
        return self._request("DELETE", f"/ai/products/{product_id}/assets/{asset_id}")

    def models(self) -> Dict[str, Any]:
        return self._request("GET", "/ai/models")

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        resp = self.http.request(method, path, **kwargs)
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", resp.text)
            except ValueError:
                detail = resp.text
            if not isinstance(detail, str):
                # FastAPI validation errors are a list of dicts
                detail = "; ".join(str(d.get("msg", d)) for d in detail) if isinstance(detail, list) else str(detail)
            raise _ERRORS.get(resp.status_code, StudioError)(detail)
        return resp.json()
