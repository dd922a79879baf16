from pathlib import Path
from typing import List

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class ModelConfig(BaseModel):
    id: str
    name: str
    is_synchronous: bool = True


class Settings(BaseSettings):
    app_name: str = "ITP Studio"
    database_url: str = "sqlite:///./backend/itp_studio.db"
    outputs_dir: str = "outputs"
    public_base_url: str = "http://127.0.0.1:8000"
    log_level: str = "INFO"

    # Image providers
    image_provider: str = "mock"
    replicate_api_token: str = ""
    image_models: List[ModelConfig] = [
        ModelConfig(id="black-forest-labs/flux-1.1-pro-ultra", name="Flux 1.1 Pro Ultra", is_synchronous=True),
    ]
    rembg_model: ModelConfig = ModelConfig(id="851-labs/background-remover", name="Background Remover")
    mockup_model: ModelConfig = ModelConfig(id="google/nano-banana", name="Nano Banana")
    upscale_model: ModelConfig = ModelConfig(id="recraft-ai/recraft-crisp-upscale", name="Recraft Crisp Upscale")
    mockup_base_url: str = "https://imaginethisprinted.com"
    callback_url: str = ""
    webhook_secret: str = ""

    # Product normalization (optional LLM endpoint returning JSON text)
    normalizer_url: str = ""
    request_timeout_s: int = 60

    # Worker
    worker_poll_interval_s: int = 5
    worker_batch_size: int = 10

    # Storage
    storage_backend: str = "local"
    minio_endpoint: str = "localhost:9000"
    minio_access_key: str = "minioadmin"
    minio_secret_key: str = "minioadmin"
    minio_secure: bool = False
    minio_bucket: str = "products"
    minio_public_url: str = "http://localhost:9000"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def default_model_id(self) -> str:
        return self.image_models[0].id if self.image_models else ""


settings = Settings()


def ensure_directories(config: Settings = settings) -> None:
    Path(config.outputs_dir).mkdir(parents=True, exist_ok=True)
