from pathlib import Path

import pytest
from sqlmodel import Session

from itp_studio.core.errors import ConflictError, NotFoundError, PromptValidationError
from itp_studio.models.entities import JobStatus, ProductStatus
from itp_studio.schemas.contracts import CreateProductRequest
from itp_studio.services.image_providers import MockProvider

from conftest import FLUX, RECRAFT


def create(services, session, prompt="red mug", **options):
    return services.pipeline.create_product(session, CreateProductRequest(prompt=prompt, **options))


def status(services, session, product_id):
    session.expire_all()
    return services.pipeline.get_status(session, product_id)


def test_create_product_seeds_one_generation_job(services, session):
    created = create(services, session, shirt_color="white", category="hoodies")
    product = created.product
    assert product.status == ProductStatus.DRAFT
    assert product.slug == "red-mug"
    assert product.price == 44.99
    assert product.metadata["ai_generated"] is True
    assert product.metadata["style"]["shirt_color"] == "white"

    [job] = created.jobs
    assert job.type == "image-generation"
    assert job.status == JobStatus.QUEUED
    assert job.input["prompt"] == created.normalized.image_prompt
    assert job.input["shirt_color"] == "white"


def test_duplicate_titles_get_unique_slugs(services, session):
    first = create(services, session).product.slug
    second = create(services, session).product.slug
    assert (first, second) == ("red-mug", "red-mug-2")


def test_unknown_model_is_rejected(services, session):
    with pytest.raises(PromptValidationError):
        create(services, session, model_ids=["someone/unknown-model"])


def test_status_is_read_only(services, session):
    created = create(services, session)
    before = status(services, session, created.product_id)
    after = status(services, session, created.product_id)
    assert [j.status for j in after.jobs] == [j.status for j in before.jobs] == [JobStatus.QUEUED]


def test_status_unknown_product(services, session):
    with pytest.raises(NotFoundError):
        services.pipeline.get_status(session, 404)


def test_manual_steps_need_a_source_image(services, session):
    product_id = create(services, session).product_id
    with pytest.raises(ConflictError):
        services.pipeline.remove_background(session, product_id)
    with pytest.raises(ConflictError):
        services.pipeline.create_mockups(session, product_id)
    with pytest.raises(ConflictError):
        services.pipeline.upscale(session, product_id)


def test_skip_to_mockups_uses_source_image(services, session):
    product_id = create(services, session).product_id
    services.processor.tick()
    [source] = status(services, session, product_id).assets_by_kind["source"]

    jobs = services.pipeline.create_mockups(session, product_id, skip_background_removal=True)
    assert [j.input["template"] for j in jobs] == ["flat_lay", "lifestyle"]
    assert {j.input["source_asset_id"] for j in jobs} == {source.id}

    services.processor.tick()
    view = status(services, session, product_id)
    mockups = view.assets_by_kind["mockup"]
    assert sorted(m.metadata["template"] for m in mockups) == ["flat_lay", "lifestyle"]
    assert [j.status for j in view.jobs if j.type == "mockup"] == [JobStatus.SUCCEEDED] * 2


def test_mockups_prefer_background_removed_image(services, session):
    product_id = create(services, session).product_id
    services.processor.tick()
    services.pipeline.remove_background(session, product_id)
    services.processor.tick()
    [nobg] = status(services, session, product_id).assets_by_kind["nobg"]

    jobs = services.pipeline.create_mockups(session, product_id)
    assert {j.input["source_asset_id"] for j in jobs} == {nobg.id}


def test_approve_orders_mockups_first(services, session):
    product_id = create(services, session).product_id
    services.processor.tick()
    services.pipeline.create_mockups(session, product_id, skip_background_removal=True)
    services.processor.tick()
    view = status(services, session, product_id)
    mockups = view.assets_by_kind["mockup"]
    [source] = view.assets_by_kind["source"]

    product = services.pipeline.approve(session, product_id)
    assert product.status == ProductStatus.ACTIVE
    assert product.images == [mockups[0].url, mockups[1].url, source.url]

    view = status(services, session, product_id)
    assert [a.id for a in view.assets if a.is_primary] == [mockups[0].id]

    with pytest.raises(ConflictError):
        services.pipeline.approve(session, product_id)


def test_approve_needs_an_asset(services, session):
    product_id = create(services, session).product_id
    with pytest.raises(ConflictError):
        services.pipeline.approve(session, product_id)


def test_regenerate_adds_new_attempt(make_services):
    provider = MockProvider()
    provider.failures[FLUX.id] = RuntimeError("timeout")
    services = make_services(provider=provider)
    with Session(services.engine, expire_on_commit=False) as session:
        product_id = create(services, session).product_id
        services.processor.tick()
        provider.failures.clear()

        [job] = services.pipeline.regenerate(session, product_id)
        assert job.attempt == 2
        services.processor.tick()

        jobs = status(services, session, product_id).jobs
        assert [(j.attempt, j.status) for j in jobs] == [(2, JobStatus.SUCCEEDED), (1, JobStatus.FAILED)]


def test_regenerate_refuses_hand_made_products(services, session, product):
    with pytest.raises(PromptValidationError):
        services.pipeline.regenerate(session, product.id)


def test_upscale_from_source(services, session):
    product_id = create(services, session).product_id
    services.processor.tick()
    [job] = services.pipeline.upscale(session, product_id)
    services.processor.tick()
    upscaled = status(services, session, product_id).assets_by_kind["upscaled"]
    assert len(upscaled) == 1
    assert upscaled[0].job_id == job.id


def test_delete_asset_removes_file_and_image(services, session, tmp_path: Path):
    product_id = create(services, session).product_id
    services.processor.tick()
    services.pipeline.approve(session, product_id)
    [source] = status(services, session, product_id).assets
    stored = next((tmp_path / "outputs").rglob("*.png"))

    product = services.pipeline.delete_asset(session, product_id, source.id)
    assert product.images == []
    assert not stored.exists()
    assert status(services, session, product_id).assets == []

    with pytest.raises(NotFoundError):
        services.pipeline.delete_asset(session, product_id, source.id)


def test_list_models(services):
    models = services.pipeline.list_models()
    assert models.default == models.models[0].id


def two_candidates(make_services):
    services = make_services(models=[FLUX, RECRAFT])
    session = Session(services.engine, expire_on_commit=False)
    product_id = create(services, session, shirt_color="white").product_id
    services.processor.tick()
    return services, session, product_id


def test_select_image_keeps_one_candidate_and_queues_mockups(make_services, tmp_path: Path):
    services, session, product_id = two_candidates(make_services)
    with session:
        first, second = status(services, session, product_id).assets_by_kind["source"]

        selected = services.pipeline.select_image(session, product_id, second.id)
        assert selected.selected_asset.id == second.id
        assert selected.selected_asset.is_primary is True
        assert selected.selected_asset.metadata["is_selected"] is True
        assert selected.removed_asset_ids == [first.id]

        assert [j.input["template"] for j in selected.jobs] == ["flat_lay", "lifestyle"]
        for job in selected.jobs:
            assert job.status == JobStatus.QUEUED
            assert job.input["source_asset_id"] == second.id
            assert job.input["shirt_color"] == "white"

        [kept] = status(services, session, product_id).assets
        assert kept.id == second.id
        assert [p.name for p in (tmp_path / "outputs").rglob("*.png")] == [Path(kept.url).name]

        services.processor.tick()
        mockups = status(services, session, product_id).assets_by_kind["mockup"]
        assert len(mockups) == 2


def test_select_image_only_accepts_source_images(make_services):
    services, session, product_id = two_candidates(make_services)
    with session:
        [source, _] = status(services, session, product_id).assets_by_kind["source"]
        services.pipeline.remove_background(session, product_id, source.id)
        services.processor.tick()
        [nobg] = status(services, session, product_id).assets_by_kind["nobg"]

        with pytest.raises(ConflictError):
            services.pipeline.select_image(session, product_id, nobg.id)
        with pytest.raises(NotFoundError):
            services.pipeline.select_image(session, product_id, 999)
        assert len(status(services, session, product_id).assets_by_kind["source"]) == 2
