from __future__ import annotations

import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from itp_studio.db.session import get_session
from itp_studio.schemas.contracts import (
    AssetSelection,
    CreateProductRequest,
    CreateProductResponse,
    ImageSelection,
    JobsResponse,
    MockupsRequest,
    ModelsResponse,
    ProductView,
    SelectImageResponse,
    StatusResponse,
    WebhookAck,
)
from itp_studio.services.container import Services
from itp_studio.services.image_providers import prediction_from_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


def get_services(request: Request) -> Services:
    return request.app.state.services


@router.post("/products", response_model=CreateProductResponse)
def create_product(
    req: CreateProductRequest,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return services.pipeline.create_product(session, req)


@router.get("/products/{product_id}/status", response_model=StatusResponse)
def product_status(product_id: int, session: Session = Depends(get_session), services: Services = Depends(get_services)):
    return services.pipeline.get_status(session, product_id)


@router.post("/products/{product_id}/remove-background", response_model=JobsResponse)
def remove_background(
    product_id: int,
    body: AssetSelection | None = None,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    asset_id = body.asset_id if body else None
    return JobsResponse(jobs=services.pipeline.remove_background(session, product_id, asset_id))


@router.post("/products/{product_id}/mockups", response_model=JobsResponse)
def create_mockups(
    product_id: int,
    body: MockupsRequest | None = None,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    body = body or MockupsRequest()
    jobs = services.pipeline.create_mockups(session, product_id, body.asset_id, body.skip_background_removal)
    return JobsResponse(jobs=jobs)


@router.post("/products/{product_id}/select-image", response_model=SelectImageResponse)
def select_image(
    product_id: int,
    body: ImageSelection,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return services.pipeline.select_image(session, product_id, body.asset_id)


@router.post("/products/{product_id}/regenerate", response_model=JobsResponse)
def regenerate(product_id: int, session: Session = Depends(get_session), services: Services = Depends(get_services)):
    return JobsResponse(jobs=services.pipeline.regenerate(session, product_id))


@router.post("/products/{product_id}/upscale", response_model=JobsResponse)
def upscale(
    product_id: int,
    body: AssetSelection | None = None,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    asset_id = body.asset_id if body else None
    return JobsResponse(jobs=services.pipeline.upscale(session, product_id, asset_id))


@router.post("/products/{product_id}/approve", response_model=ProductView)
def approve(product_id: int, session: Session = Depends(get_session), services: Services = Depends(get_services)):
    return services.pipeline.approve(session, product_id)


@router.delete("/products/{product_id}/assets/{asset_id}", response_model=ProductView)
def delete_asset(
    product_id: int,
    asset_id: int,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return services.pipeline.delete_asset(session, product_id, asset_id)


@router.get("/models", response_model=ModelsResponse)
def list_models(services: Services = Depends(get_services)):
    return services.pipeline.list_models()


@router.post("/replicate/callback", response_model=WebhookAck)
async def replicate_callback(request: Request, services: Services = Depends(get_services)):
    body = await request.body()
    secret = services.settings.webhook_secret
    if secret:
        signature = request.headers.get("X-Replicate-Signature", "").removeprefix("sha256=")
        expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(signature, expected):
            logger.warning("Rejected provider callback with a bad signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

    # always 200 from here on
    try:
        prediction = prediction_from_payload(json.loads(body))
    except (ValueError, KeyError, TypeError, ValidationError) as exc:
        logger.error(f"Unreadable provider callback: {exc}")
        return WebhookAck(ok=False, error="Invalid payload")

    try:
        job = await run_in_threadpool(services.processor.handle_callback, prediction)
    except Exception as exc:
        logger.exception(f"Callback for prediction {prediction.id} failed")
        return WebhookAck(ok=False, error=str(exc))
    if job is None:
        logger.warning(f"No job found for prediction {prediction.id}")
        return WebhookAck(ok=False, error="Job not found")
    logger.info(f"job={job.id} prediction={prediction.id} callback applied ({prediction.status})")
    return WebhookAck(ok=True)
