from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlmodel import Session, col, select

from itp_studio.core.errors import ConflictError, NotFoundError, PromptValidationError
from itp_studio.models.entities import AssetKind, Job, JobType, Product, ProductAsset, ProductStatus, utcnow
from itp_studio.schemas.contracts import (
    AssetView,
    BackgroundRemovalInput,
    CreateProductRequest,
    CreateProductResponse,
    ImageGenerationInput,
    JobView,
    MockupInput,
    ModelInfo,
    ModelsResponse,
    ProductView,
    SelectImageResponse,
    StatusResponse,
    UpscaleInput,
)
from itp_studio.services import jobs as job_store
from itp_studio.services.image_providers import ModelAdapter
from itp_studio.services.normalizer import ProductNormalizer
from itp_studio.services.storage import Storage
from itp_studio.utils.slug import generate_unique_slug, slugify

logger = logging.getLogger(__name__)

# order of product.images after approval; within a kind, oldest first
DISPLAY_ORDER = [AssetKind.MOCKUP, AssetKind.UPSCALED, AssetKind.NOBG, AssetKind.SOURCE]
MOCKUP_TEMPLATES = ("flat_lay", "lifestyle")


def product_view(product: Product) -> ProductView:
    return ProductView(
        id=product.id,
        name=product.name,
        slug=product.slug,
        description=product.description,
        price=product.price,
        category=product.category,
        status=product.status,
        images=list(product.images or []),
        metadata=dict(product.meta or {}),
        created_at=product.created_at,
    )


def job_view(job: Job) -> JobView:
    return JobView(
        id=job.id,
        product_id=job.product_id,
        type=job.type,
        status=job.status,
        attempt=job.attempt,
        input=job.input or {},
        output=job.output or {},
        prediction_id=job.prediction_id,
        error=job.error,
        created_at=job.created_at,
        started_at=job.started_at,
        finished_at=job.finished_at,
    )


def asset_view(asset: ProductAsset) -> AssetView:
    return AssetView(
        id=asset.id,
        product_id=asset.product_id,
        job_id=asset.job_id,
        kind=asset.kind,
        url=asset.url,
        width=asset.width,
        height=asset.height,
        is_primary=asset.is_primary,
        metadata=dict(asset.meta or {}),
        created_at=asset.created_at,
    )


def order_assets(assets: List[ProductAsset]) -> List[ProductAsset]:
    rank = {kind: i for i, kind in enumerate(DISPLAY_ORDER)}
    return sorted(assets, key=lambda a: (rank[AssetKind(a.kind)], a.id))


class PipelineService:
    """Admin operations on AI generated products.

    Every operation that starts paid work inserts queued jobs only; the
    worker executes them. Nothing here calls a model provider.
    """

    def __init__(self, adapter: ModelAdapter, normalizer: ProductNormalizer, storage: Storage):
        self.adapter = adapter
        self.normalizer = normalizer
        self.storage = storage

    def create_product(self, session: Session, req: CreateProductRequest) -> CreateProductResponse:
        known = {m.id for m in self.adapter.models}
        unknown = [m for m in req.model_ids if m not in known]
        if unknown:
            raise PromptValidationError(f"Unknown model(s): {', '.join(unknown)}")

        normalized = self.normalizer.normalize(req)
        base = slugify(normalized.title)
        taken = session.exec(select(Product.slug).where(col(Product.slug).startswith(base))).all()
        style = req.style()
        product = Product(
            name=normalized.title,
            slug=generate_unique_slug(base, taken),
            description=normalized.description,
            price=normalized.suggested_price_cents / 100,
            category=normalized.category_slug,
            status=ProductStatus.DRAFT,
            meta={
                "ai_generated": True,
                "prompt": req.prompt,
                "image_prompt": normalized.image_prompt,
                "summary": normalized.summary,
                "tags": normalized.tags,
                "tone": req.tone,
                "mockup_style": normalized.mockup_style,
                "style": style.model_dump(),
                "model_ids": list(req.model_ids),
            },
        )
        session.add(product)
        session.commit()
        session.refresh(product)

        job = job_store.create_job(
            session,
            product.id,
            JobType.IMAGE_GENERATION,
            ImageGenerationInput(prompt=normalized.image_prompt, model_ids=req.model_ids, **style.model_dump()),
        )
        logger.info(f"product={product.id} created as {product.slug!r}, job={job.id} queued")
        return CreateProductResponse(
            product_id=product.id,
            product=product_view(product),
            normalized=normalized,
            jobs=[job_view(job)],
        )

    def get_status(self, session: Session, product_id: int) -> StatusResponse:
        product = self._get_product(session, product_id)
        assets = order_assets(self._assets(session, product_id))
        by_kind: Dict[str, List[AssetView]] = {kind.value: [] for kind in AssetKind}
        views = []
        for asset in assets:
            view = asset_view(asset)
            views.append(view)
            by_kind[AssetKind(asset.kind).value].append(view)
        return StatusResponse(
            product=product_view(product),
            jobs=[job_view(j) for j in job_store.list_jobs(session, product_id)],
            assets=views,
            assets_by_kind=by_kind,
        )

    def remove_background(self, session: Session, product_id: int, asset_id: Optional[int] = None) -> List[JobView]:
        self._get_product(session, product_id)
        source = self._source(session, product_id, JobType.BACKGROUND_REMOVAL, asset_id)
        if source is None:
            raise ConflictError("No source image to remove the background from")
        job = job_store.create_job(
            session,
            product_id,
            JobType.BACKGROUND_REMOVAL,
            BackgroundRemovalInput(source_asset_id=source.id, image_url=source.url),
        )
        logger.info(f"product={product_id} background removal job={job.id} queued from asset={source.id}")
        return [job_view(job)]

    def create_mockups(
        self,
        session: Session,
        product_id: int,
        asset_id: Optional[int] = None,
        skip_background_removal: bool = False,
    ) -> List[JobView]:
        product = self._get_product(session, product_id)
        if asset_id is not None:
            source = self._get_asset(session, product_id, asset_id)
        else:
            source = None
            if not skip_background_removal:
                source = job_store.latest_asset(session, product_id, [AssetKind.NOBG])
            if source is None:
                source = job_store.latest_asset(session, product_id, [AssetKind.SOURCE])
        if source is None:
            raise ConflictError("No image available for mockups")
        return [job_view(j) for j in self._queue_mockups(session, product, source)]

    def select_image(self, session: Session, product_id: int, asset_id: int) -> SelectImageResponse:
        """Keep one generated image: mark it primary, drop the other candidates, queue its mockups."""
        product = self._get_product(session, product_id)
        selected = self._get_asset(session, product_id, asset_id)
        if AssetKind(selected.kind) != AssetKind.SOURCE:
            raise ConflictError("Only generated source images can be selected")

        removed = []
        for asset in self._assets(session, product_id):
            if asset.id == selected.id:
                continue
            if AssetKind(asset.kind) == AssetKind.SOURCE:
                removed.append(asset)
                session.delete(asset)
            elif asset.is_primary:
                asset.is_primary = False
                session.add(asset)
        selected.is_primary = True
        selected.meta = {**(selected.meta or {}), "is_selected": True, "selected_at": utcnow().isoformat()}
        session.add(selected)
        removed_ids = [a.id for a in removed]
        removed_paths = [a.path for a in removed]
        removed_urls = {a.url for a in removed}
        product.images = [url for url in (product.images or []) if url not in removed_urls]
        product.updated_at = utcnow()
        session.add(product)
        session.commit()
        session.refresh(selected)

        for path in removed_paths:
            try:
                self.storage.delete(path)
            except Exception as exc:
                logger.warning(f"product={product_id} could not delete stored object {path}: {exc}")
        logger.info(
            f"product={product_id} selected asset={selected.id}, removed {len(removed_ids)} other source image(s)"
        )
        jobs = self._queue_mockups(session, product, selected)
        return SelectImageResponse(
            selected_asset=asset_view(selected),
            removed_asset_ids=removed_ids,
            jobs=[job_view(j) for j in jobs],
        )

    def regenerate(self, session: Session, product_id: int) -> List[JobView]:
        product = self._get_product(session, product_id)
        meta = product.meta or {}
        if not meta.get("ai_generated"):
            raise PromptValidationError("Product was not AI generated")
        params = ImageGenerationInput(
            prompt=meta.get("image_prompt") or meta.get("prompt") or product.name,
            model_ids=meta.get("model_ids", []),
            **meta.get("style", {}),
        )
        job = job_store.create_job(session, product_id, JobType.IMAGE_GENERATION, params)
        logger.info(f"product={product_id} regeneration job={job.id} queued (attempt {job.attempt})")
        return [job_view(job)]

    def upscale(self, session: Session, product_id: int, asset_id: Optional[int] = None) -> List[JobView]:
        self._get_product(session, product_id)
        source = self._source(session, product_id, JobType.UPSCALE, asset_id)
        if source is None:
            raise ConflictError("No image available to upscale")
        job = job_store.create_job(
            session, product_id, JobType.UPSCALE, UpscaleInput(source_asset_id=source.id, image_url=source.url)
        )
        logger.info(f"product={product_id} upscale job={job.id} queued from asset={source.id}")
        return [job_view(job)]

    def approve(self, session: Session, product_id: int) -> ProductView:
        product = self._get_product(session, product_id)
        if product.status != ProductStatus.DRAFT:
            raise ConflictError(f"Product is already {ProductStatus(product.status).value}")
        assets = order_assets(self._assets(session, product_id))
        if not assets:
            raise ConflictError("Product has no images to approve")

        for i, asset in enumerate(assets):
            asset.is_primary = i == 0
            session.add(asset)
        product.images = [a.url for a in assets]
        product.status = ProductStatus.ACTIVE
        product.updated_at = utcnow()
        session.add(product)
        session.commit()
        session.refresh(product)
        logger.info(f"product={product_id} approved with {len(assets)} image(s)")
        return product_view(product)

    def delete_asset(self, session: Session, product_id: int, asset_id: int) -> ProductView:
        product = self._get_product(session, product_id)
        asset = self._get_asset(session, product_id, asset_id)
        path = asset.path
        product.images = [url for url in (product.images or []) if url != asset.url]
        product.updated_at = utcnow()
        session.add(product)
        session.delete(asset)
        session.commit()
        session.refresh(product)
        try:
            self.storage.delete(path)
        except Exception as exc:
            logger.warning(f"product={product_id} could not delete stored object {path}: {exc}")
        logger.info(f"product={product_id} asset={asset_id} deleted")
        return product_view(product)

    def list_models(self) -> ModelsResponse:
        models = [ModelInfo(id=m.id, name=m.name, is_synchronous=m.is_synchronous) for m in self.adapter.models]
        return ModelsResponse(models=models, default=models[0].id if models else "")

    def _get_product(self, session: Session, product_id: int) -> Product:
        product = session.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def _get_asset(self, session: Session, product_id: int, asset_id: int) -> ProductAsset:
        asset = session.get(ProductAsset, asset_id)
        if asset is None or asset.product_id != product_id:
            raise NotFoundError(f"Asset {asset_id} not found")
        return asset

    def _source(
        self, session: Session, product_id: int, job_type: JobType, asset_id: Optional[int]
    ) -> Optional[ProductAsset]:
        if asset_id is not None:
            return self._get_asset(session, product_id, asset_id)
        return job_store.resolve_source_asset(session, product_id, job_type)

    def _assets(self, session: Session, product_id: int) -> List[ProductAsset]:
        return list(session.exec(select(ProductAsset).where(ProductAsset.product_id == product_id)).all())

    def _queue_mockups(self, session: Session, product: Product, source: ProductAsset) -> List[Job]:
        style = (product.meta or {}).get("style", {})
        created = []
        for template in MOCKUP_TEMPLATES:
            params = MockupInput(
                template=template,
                source_asset_id=source.id,
                garment_image_url=source.url,
                product_type=style.get("product_type", "tshirt"),
                shirt_color=style.get("shirt_color", "black"),
                print_placement=style.get("print_placement", "front-center"),
            )
            created.append(job_store.create_job(session, product.id, JobType.MOCKUP, params))
        logger.info(
            f"product={product.id} mockup jobs {[j.id for j in created]} queued from "
            f"{AssetKind(source.kind).value} asset={source.id}"
        )
        return created
