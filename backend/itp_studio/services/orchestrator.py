"""Job execution: claims queued jobs, calls the model adapter, stores results.

Used by the polling worker and by the provider webhook, which share
:meth:`JobProcessor.apply_prediction` so a prediction delivered twice (poll
and callback, or two polls) never produces a second asset.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from itp_studio.db.session import session_scope
from itp_studio.models.entities import JOB_ASSET_KIND, Job, JobStatus, JobType, Product, utcnow
from itp_studio.schemas.contracts import (
    ImageGenerationInput,
    JobOutput,
    ModelOutput,
    Prediction,
    StyleOptions,
    parse_job_input,
)
from itp_studio.services import jobs as job_store
from itp_studio.services.image_providers import ModelAdapter
from itp_studio.services.storage import Storage, build_asset_path, image_size

logger = logging.getLogger(__name__)


class JobProcessor:
    def __init__(self, engine: Engine, adapter: ModelAdapter, storage: Storage, batch_size: int = 10):
        self.engine = engine
        self.adapter = adapter
        self.storage = storage
        self.batch_size = batch_size

    def tick(self) -> None:
        try:
            self.process_queued()
            self.poll_pending()
        except Exception:
            logger.exception("Worker tick failed")

    # ── queued pass ──────────────────────────────────────────────────────────
    def process_queued(self) -> int:
        started = 0
        with session_scope(self.engine) as session:
            queued = job_store.list_queued(session, limit=self.batch_size)
            if queued:
                logger.info(f"Processing {len(queued)} queued job(s)")
            for job in queued:
                try:
                    if self.start_job(session, job):
                        started += 1
                except Exception as exc:
                    logger.exception(f"job={job.id} failed to start")
                    session.rollback()
                    self._fail_quietly(session, job, str(exc))
        return started

    def start_job(self, session: Session, job: Job) -> bool:
        if not job_store.claim_job(session, job):
            logger.info(f"job={job.id} already claimed, skipping")
            return False
        logger.info(f"job={job.id} product={job.product_id} type={JobType(job.type).value} running")
        params = parse_job_input(job.type, job.input)

        if isinstance(params, ImageGenerationInput):
            style = StyleOptions(**params.model_dump(include=set(StyleOptions.model_fields)))
            result = self.adapter.generate(params.prompt, style, params.model_ids, params.width, params.height)
            output = JobOutput(is_multi_model=result.is_multi_model, outputs=result.outputs)
        else:
            source = job_store.resolve_source_asset(session, job.product_id, job.type, params.source_asset_id)
            if source is None:
                logger.error(f"job={job.id} source asset {params.source_asset_id} not found")
                job_store.finish_job(session, job, JobStatus.FAILED, error="Source image asset not found")
                return True
            if job.type == JobType.BACKGROUND_REMOVAL:
                entry = self.adapter.remove_background(source.url)
            elif job.type == JobType.MOCKUP:
                entry = self.adapter.create_mockup(params.model_copy(update={"garment_image_url": source.url}))
            else:
                entry = self.adapter.upscale(source.url)
            output = JobOutput(is_multi_model=False, outputs=[entry])

        job_store.save_output(session, job, output)
        for entry in output.outputs:
            if entry.status == "succeeded" and entry.url:
                self._store(session, job, output, entry)
        self._settle(session, job, output)
        return True

    # ── prediction pass ──────────────────────────────────────────────────────
    def poll_pending(self) -> int:
        polled = 0
        with session_scope(self.engine) as session:
            for job in job_store.list_pending(session):
                output = JobOutput.model_validate(job.output)
                for entry in output.pending():
                    try:
                        prediction = self.adapter.get_prediction(entry.prediction_id)
                    except Exception as exc:
                        logger.error(f"job={job.id} prediction={entry.prediction_id} poll failed: {exc}")
                        continue
                    polled += 1
                    try:
                        self.apply_prediction(session, job, prediction)
                    except Exception:
                        logger.exception(f"job={job.id} prediction={prediction.id} could not be applied")
                        session.rollback()
        return polled

    def apply_prediction(self, session: Session, job: Job, prediction: Prediction) -> None:
        session.refresh(job)
        if JobStatus(job.status).is_terminal:
            logger.info(f"job={job.id} already {JobStatus(job.status).value}, ignoring prediction {prediction.id}")
            return
        output = JobOutput.model_validate(job.output or {})
        entry = next((o for o in output.outputs if o.prediction_id == prediction.id), None)
        if entry is None or entry.is_terminal:
            return
        if not prediction.is_terminal:
            logger.info(f"job={job.id} prediction={prediction.id} still {prediction.status}")
            return

        if prediction.status == "succeeded" and prediction.output_url:
            entry.status = "succeeded"
            entry.url = prediction.output_url
            job_store.save_output(session, job, output)
            self._store(session, job, output, entry)
        else:
            entry.status = "failed"
            if prediction.status == "canceled":
                entry.error = "Prediction was canceled"
            elif prediction.status == "succeeded":
                entry.error = "No output URL in prediction"
            else:
                entry.error = prediction.error or "Prediction failed"
            logger.error(f"job={job.id} prediction={prediction.id} {prediction.status}: {entry.error}")
        self._settle(session, job, output)

    def handle_callback(self, prediction: Prediction) -> Optional[Job]:
        with session_scope(self.engine) as session:
            job = job_store.find_job_by_prediction(session, prediction.id)
            if job is None:
                return None
            self.apply_prediction(session, job, prediction)
            return job

    # ── helpers ──────────────────────────────────────────────────────────────
    def _store(self, session: Session, job: Job, output: JobOutput, entry: ModelOutput) -> bool:
        kind = JOB_ASSET_KIND[JobType(job.type)]
        existing = job_store.find_existing_asset(
            session, job.id, prediction_id=entry.prediction_id, model_id=entry.model_id
        )
        if existing is not None:
            entry.asset_id = existing.id
            return True

        product = session.get(Product, job.product_id)
        template = (job.input or {}).get("template")
        path = build_asset_path(product.slug if product else str(job.product_id), kind, template)
        try:
            data = self.adapter.fetch(entry.url)
            url = self.storage.upload(data, path)
        except Exception as exc:
            message = f"Upload failed for {entry.model_name}: {exc}"
            logger.error(f"job={job.id} {message}")
            entry.error = message
            job_store.save_output(session, job, output, error=message)
            return False

        width, height = image_size(data)
        asset = job_store.create_asset(
            session,
            product_id=job.product_id,
            job_id=job.id,
            kind=kind,
            path=path,
            url=url,
            width=width,
            height=height,
            prediction_id=entry.prediction_id,
            model_id=entry.model_id,
            meta={
                "model_id": entry.model_id,
                "model_name": entry.model_name,
                "template": template,
                "provider_url": entry.url,
                "generated_at": utcnow().isoformat(),
            },
        )
        entry.asset_id = asset.id
        if asset.path != path:
            logger.info(f"job={job.id} asset={asset.id} was stored by another writer, discarding {path}")
            self._discard(path)
        else:
            logger.info(f"job={job.id} stored {kind.value} asset={asset.id} {url}")
        job_store.save_output(session, job, output)
        return True

    def _settle(self, session: Session, job: Job, output: JobOutput) -> None:
        job_store.save_output(session, job, output)
        if not output.is_complete():
            return
        if JobStatus(job.status).is_terminal:
            return
        if any(o.status == "succeeded" for o in output.outputs):
            if job_store.finish_job(session, job, JobStatus.SUCCEEDED):
                logger.info(f"job={job.id} succeeded")
            return
        errors = "; ".join(f"{o.model_name}: {o.error}" for o in output.outputs) or "No models configured"
        if job_store.finish_job(session, job, JobStatus.FAILED, error=errors):
            logger.error(f"job={job.id} failed: {errors}")

    def _discard(self, path: str) -> None:
        try:
            self.storage.delete(path)
        except Exception as exc:
            logger.warning(f"could not delete stored object {path}: {exc}")

    def _fail_quietly(self, session: Session, job: Job, error: str) -> None:
        try:
            job_store.fail_job(session, job, error)
        except Exception:
            logger.exception(f"job={job.id} could not be marked failed")
            session.rollback()

