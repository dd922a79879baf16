from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from itp_studio.core.settings import Settings
from itp_studio.db.session import create_db_engine, init_db
from itp_studio.services.image_providers import ImageProvider, ModelAdapter, get_provider
from itp_studio.services.normalizer import ProductNormalizer
from itp_studio.services.orchestrator import JobProcessor
from itp_studio.services.pipeline import PipelineService
from itp_studio.services.storage import Storage, get_storage


@dataclass
class Services:
    """Everything the API and the worker share, built once per process."""

    settings: Settings
    engine: Engine
    adapter: ModelAdapter
    storage: Storage
    pipeline: PipelineService
    processor: JobProcessor


def build_services(
    config: Settings,
    *,
    engine: Engine | None = None,
    provider: ImageProvider | None = None,
    storage: Storage | None = None,
) -> Services:
    engine = engine or create_db_engine(config.database_url)
    init_db(engine)
    adapter = ModelAdapter.from_settings(config, provider or get_provider(config))
    storage = storage or get_storage(config)
    normalizer = ProductNormalizer(config.normalizer_url, timeout_s=config.request_timeout_s)
    return Services(
        settings=config,
        engine=engine,
        adapter=adapter,
        storage=storage,
        pipeline=PipelineService(adapter, normalizer, storage),
        processor=JobProcessor(engine, adapter, storage, batch_size=config.worker_batch_size),
    )
