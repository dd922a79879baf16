import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from itp_studio.core.errors import JobStateError


class JobType(str, enum.Enum):
    IMAGE_GENERATION = "image-generation"
    BACKGROUND_REMOVAL = "background-removal"
    MOCKUP = "mockup"
    UPSCALE = "upscale"


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


class AssetKind(str, enum.Enum):
    SOURCE = "source"
    NOBG = "nobg"
    MOCKUP = "mockup"
    UPSCALED = "upscaled"


class ProductStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"


ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED},
    JobStatus.SUCCEEDED: set(),
    JobStatus.FAILED: set(),
}

# asset kind produced by each job type
JOB_ASSET_KIND = {
    JobType.IMAGE_GENERATION: AssetKind.SOURCE,
    JobType.BACKGROUND_REMOVAL: AssetKind.NOBG,
    JobType.MOCKUP: AssetKind.MOCKUP,
    JobType.UPSCALE: AssetKind.UPSCALED,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    slug: str = Field(index=True, unique=True)
    description: str = ""
    price: float = 0.0
    category: str = "shirts"
    status: ProductStatus = Field(default=ProductStatus.DRAFT, index=True)
    images: list = Field(default_factory=list, sa_column=Column(JSON))
    meta: dict = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProductAsset(SQLModel, table=True):
    __tablename__ = "product_asset"

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(index=True, foreign_key="product.id")
    job_id: Optional[int] = Field(default=None, index=True, foreign_key="job.id")
    prediction_id: Optional[str] = Field(default=None, index=True)
    # one asset per job output entry: "{job_id}:{prediction_id or model_id}"
    output_key: Optional[str] = Field(default=None, unique=True)
    kind: AssetKind = Field(index=True)
    path: str
    url: str
    width: int = 0
    height: int = 0
    is_primary: bool = False
    meta: dict = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    created_at: datetime = Field(default_factory=utcnow)


class Job(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(index=True, foreign_key="product.id")
    type: JobType = Field(index=True)
    status: JobStatus = Field(default=JobStatus.QUEUED, index=True)
    attempt: int = 1
    input: dict = Field(default_factory=dict, sa_column=Column(JSON))
    output: dict = Field(default_factory=dict, sa_column=Column(JSON))
    prediction_id: Optional[str] = Field(default=None, index=True)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def transition_to(self, status: JobStatus) -> None:
        current = JobStatus(self.status)
        if status not in ALLOWED_TRANSITIONS[current]:
            raise JobStateError(f"job {self.id}: illegal transition {current.value} -> {status.value}")
        now = utcnow()
        self.status = status
        self.updated_at = now
        if status == JobStatus.RUNNING:
            self.started_at = now
        elif status.is_terminal:
            self.finished_at = now
