from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from itp_studio.core.settings import ModelConfig, Settings
from itp_studio.main import create_app
from itp_studio.models.entities import Product
from itp_studio.services.container import build_services
from itp_studio.services.image_providers import MockProvider
from itp_studio.services.storage import LocalStorage

FLUX = ModelConfig(id="black-forest-labs/flux-1.1-pro-ultra", name="Flux", is_synchronous=True)
IMAGEN = ModelConfig(id="google/imagen-4-ultra", name="Imagen", is_synchronous=False)
RECRAFT = ModelConfig(id="recraft-ai/recraft-v3", name="Recraft", is_synchronous=True)


@pytest.fixture
def make_services(tmp_path: Path):
    def factory(models=None, provider=None, storage=None, **overrides):
        options = {
            "database_url": "sqlite://",
            "outputs_dir": str(tmp_path / "outputs"),
            "public_base_url": "http://testserver",
            **overrides,
        }
        config = Settings(_env_file=None, image_models=models or [FLUX], **options)
        return build_services(
            config,
            provider=provider or MockProvider(),
            storage=storage or LocalStorage(config.outputs_dir, config.public_base_url),
        )

    return factory


@pytest.fixture
def services(make_services):
    return make_services()


@pytest.fixture
def session(services):
    with Session(services.engine, expire_on_commit=False) as s:
        yield s


@pytest.fixture
def client(services):
    return TestClient(create_app(services=services))


@pytest.fixture
def product(session) -> Product:
    """A hand-made product, not AI generated."""
    product = Product(name="Plain Mug", slug="plain-mug")
    session.add(product)
    session.commit()
    session.refresh(product)
    return product
