from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from itp_studio.models.entities import AssetKind, JobStatus, JobType, ProductStatus

MAX_PROMPT_CHARS = 2000

ImageStyle = Literal["realistic", "cartoon", "semi-realistic"]
Background = Literal["transparent", "studio"]
Category = Literal["dtf-transfers", "shirts", "hoodies", "tumblers"]
ProductType = Literal["tshirt", "hoodie", "tank"]
ShirtColor = Literal["black", "white", "gray", "color"]
PrintPlacement = Literal["front-center", "left-pocket", "back-only", "pocket-front-back-full"]
PrintStyle = Literal["clean", "halftone", "grunge"]
MockupTemplate = Literal["flat_lay", "lifestyle"]
OutputStatus = Literal["processing", "succeeded", "failed"]


class StyleOptions(BaseModel):
    image_style: ImageStyle = "semi-realistic"
    background: Background = "transparent"
    product_type: ProductType = "tshirt"
    shirt_color: ShirtColor = "black"
    print_placement: PrintPlacement = "front-center"
    print_style: PrintStyle = "clean"


class CreateProductRequest(StyleOptions):
    model_config = ConfigDict(protected_namespaces=())

    prompt: str
    price_target: Optional[int] = Field(default=None, ge=0, description="Target price in cents")
    mockup_style: Optional[Literal["flat", "human"]] = None
    tone: Optional[str] = None
    category: Category = "shirts"
    model_ids: List[str] = Field(default_factory=list)

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Prompt is required")
        if len(v) > MAX_PROMPT_CHARS:
            raise ValueError(f"Prompt is longer than {MAX_PROMPT_CHARS} characters")
        return v

    def style(self) -> StyleOptions:
        return StyleOptions(**self.model_dump(include=set(StyleOptions.model_fields)))


class NormalizedProduct(BaseModel):
    category_slug: Category = "shirts"
    category_name: str = "Shirts"
    title: str
    summary: str = ""
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    suggested_price_cents: int = Field(default=2499, ge=0)
    mockup_style: Literal["flat", "human"] = "flat"
    background: Background = "transparent"
    image_prompt: str


# ── Job inputs, one variant per job type ─────────────────────────────────────
class ImageGenerationInput(StyleOptions):
    model_config = ConfigDict(protected_namespaces=())

    kind: Literal["image-generation"] = "image-generation"
    prompt: str
    width: int = 1024
    height: int = 1024
    model_ids: List[str] = Field(default_factory=list)


class BackgroundRemovalInput(BaseModel):
    kind: Literal["background-removal"] = "background-removal"
    source_asset_id: int
    image_url: str


class MockupInput(BaseModel):
    kind: Literal["mockup"] = "mockup"
    template: MockupTemplate
    source_asset_id: int
    garment_image_url: str
    product_type: ProductType = "tshirt"
    shirt_color: ShirtColor = "black"
    print_placement: PrintPlacement = "front-center"


class UpscaleInput(BaseModel):
    kind: Literal["upscale"] = "upscale"
    source_asset_id: int
    image_url: str


JobInput = Union[ImageGenerationInput, BackgroundRemovalInput, MockupInput, UpscaleInput]

_INPUT_TYPES = {
    JobType.IMAGE_GENERATION: ImageGenerationInput,
    JobType.BACKGROUND_REMOVAL: BackgroundRemovalInput,
    JobType.MOCKUP: MockupInput,
    JobType.UPSCALE: UpscaleInput,
}


def parse_job_input(job_type: JobType, payload: Dict[str, Any]) -> JobInput:
    return _INPUT_TYPES[JobType(job_type)].model_validate(payload)


# ── Model results ────────────────────────────────────────────────────────────
class ModelOutput(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    model_name: str
    is_synchronous: bool = True
    status: OutputStatus = "processing"
    url: Optional[str] = None
    prediction_id: Optional[str] = None
    error: Optional[str] = None
    asset_id: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "processing"

    @property
    def is_pending(self) -> bool:
        return self.status == "processing" and bool(self.prediction_id)


class JobOutput(BaseModel):
    is_multi_model: bool = False
    outputs: List[ModelOutput] = Field(default_factory=list)

    def pending(self) -> List[ModelOutput]:
        return [o for o in self.outputs if o.is_pending]

    def is_complete(self) -> bool:
        """Every entry terminal and every success stored as an asset."""
        return all(o.is_terminal and (o.status == "failed" or o.asset_id is not None) for o in self.outputs)


class GenerationResult(JobOutput):
    id: str
    status: Literal["succeeded"] = "succeeded"


class Prediction(BaseModel):
    id: str
    status: Literal["starting", "processing", "succeeded", "failed", "canceled"]
    output_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("succeeded", "failed", "canceled")


# ── API views ────────────────────────────────────────────────────────────────
class ProductView(BaseModel):
    id: int
    name: str
    slug: str
    description: str
    price: float
    category: str
    status: ProductStatus
    images: List[str]
    metadata: Dict[str, Any]
    created_at: datetime


class JobView(BaseModel):
    id: int
    product_id: int
    type: JobType
    status: JobStatus
    attempt: int
    input: Dict[str, Any]
    output: Dict[str, Any]
    prediction_id: Optional[str]
    error: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]


class AssetView(BaseModel):
    id: int
    product_id: int
    job_id: Optional[int]
    kind: AssetKind
    url: str
    width: int
    height: int
    is_primary: bool
    metadata: Dict[str, Any]
    created_at: datetime


class CreateProductResponse(BaseModel):
    product_id: int
    product: ProductView
    normalized: NormalizedProduct
    jobs: List[JobView]


class StatusResponse(BaseModel):
    product: ProductView
    jobs: List[JobView]
    assets: List[AssetView]
    assets_by_kind: Dict[str, List[AssetView]]


class AssetSelection(BaseModel):
    asset_id: Optional[int] = None


class MockupsRequest(AssetSelection):
    skip_background_removal: bool = False


class ImageSelection(BaseModel):
    asset_id: int


class JobsResponse(BaseModel):
    jobs: List[JobView]


class SelectImageResponse(JobsResponse):
    selected_asset: AssetView
    removed_asset_ids: List[int] = Field(default_factory=list)


class ModelInfo(BaseModel):
    id: str
    name: str
    is_synchronous: bool


class ModelsResponse(BaseModel):
    models: List[ModelInfo]
    default: str


class WebhookAck(BaseModel):
    ok: bool
    error: Optional[str] = None


class JsonContractHelper:
    @staticmethod
    def parse_with_repair(raw: str, schema_cls: type[BaseModel]) -> BaseModel:
        attempts = [raw]
        cleaned = raw.strip()
        if cleaned.startswith("```"):
            cleaned = cleaned.strip("`")
            cleaned = cleaned.replace("json", "", 1).strip()
            attempts.append(cleaned)
        # models sometimes wrap the object in prose
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if 0 <= start < end:
            attempts.append(cleaned[start : end + 1])

        last_error: ValidationError | None = None
        for attempt in attempts:
            try:
                payload = json.loads(attempt)
                return schema_cls.model_validate(payload)
            except (json.JSONDecodeError, ValidationError) as exc:
                last_error = exc if isinstance(exc, ValidationError) else None
                continue
        if last_error:
            raise last_error
        raise ValueError("Unable to parse JSON output")
