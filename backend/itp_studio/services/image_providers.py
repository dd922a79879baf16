from __future__ import annotations

import logging
import time
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from typing import Any, Dict, List, Optional

import httpx
from PIL import Image, ImageDraw

from itp_studio.core.errors import ProviderError
from itp_studio.core.settings import ModelConfig, Settings
from itp_studio.schemas.contracts import GenerationResult, MockupInput, ModelOutput, Prediction, StyleOptions
from itp_studio.services.prompts import build_mockup_prompt, build_print_prompt, mockup_base_image

logger = logging.getLogger(__name__)


class ImageProvider(ABC):
    name = "base"

    def __init__(self, timeout_s: int = 60):
        self.timeout_s = timeout_s

    @abstractmethod
    def run(self, model_id: str, model_input: Dict[str, Any]) -> str:
        """Block until the model finishes and return the output URL."""
        raise NotImplementedError

    @abstractmethod
    def create_prediction(self, model_id: str, model_input: Dict[str, Any]) -> str:
        """Start an asynchronous prediction and return its id."""
        raise NotImplementedError

    @abstractmethod
    def get_prediction(self, prediction_id: str) -> Prediction:
        raise NotImplementedError

    def fetch(self, url: str) -> bytes:
        with httpx.Client(timeout=self.timeout_s, follow_redirects=True) as client:
            resp = client.get(url)
            resp.raise_for_status()
            return resp.content


class MockProvider(ImageProvider):
    """Offline provider: placeholder PNGs and in-memory predictions.

    ``failures`` maps a model id to the exception its calls raise. With
    ``auto_complete`` off, predictions stay ``processing`` until
    :meth:`complete` resolves them.
    """

    name = "mock"

    def __init__(self, timeout_s: int = 60, auto_complete: bool = True):
        super().__init__(timeout_s)
        self.auto_complete = auto_complete
        self.failures: Dict[str, Exception] = {}
        self.predictions: Dict[str, Prediction] = {}
        self.calls: List[str] = []

    def run(self, model_id: str, model_input: Dict[str, Any]) -> str:
        self._record(model_id)
        return f"mock://{model_id}/{uuid.uuid4().hex}.png"

    def create_prediction(self, model_id: str, model_input: Dict[str, Any]) -> str:
        self._record(model_id)
        prediction_id = f"mock-{uuid.uuid4().hex[:12]}"
        self.predictions[prediction_id] = Prediction(id=prediction_id, status="starting")
        return prediction_id

    def get_prediction(self, prediction_id: str) -> Prediction:
        if prediction_id not in self.predictions:
            raise ProviderError(f"Prediction {prediction_id} not found")
        if self.auto_complete and not self.predictions[prediction_id].is_terminal:
            self.complete(prediction_id)
        return self.predictions[prediction_id]

    def complete(self, prediction_id: str, status: str = "succeeded", error: Optional[str] = None) -> Prediction:
        url = f"mock://predictions/{prediction_id}.png" if status == "succeeded" else None
        self.predictions[prediction_id] = Prediction(id=prediction_id, status=status, output_url=url, error=error)
        return self.predictions[prediction_id]

    def fetch(self, url: str) -> bytes:
        if not url.startswith("mock://"):
            return super().fetch(url)
        img = Image.new("RGB", (1024, 1024), "white")
        draw = ImageDraw.Draw(img)
        draw.text((20, 20), f"Mock image\n{url[7:120]}", fill="black")
        buf = BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()

    def _record(self, model_id: str) -> None:
        self.calls.append(model_id)
        if model_id in self.failures:
            raise self.failures[model_id]


class ReplicateProvider(ImageProvider):
    name = "replicate"

    def __init__(self, api_token: str, timeout_s: int = 60, webhook_url: str = ""):
        super().__init__(timeout_s)
        if not api_token:
            raise RuntimeError("REPLICATE_API_TOKEN not set")
        import replicate

        self.client = replicate.Client(api_token=api_token)
        self.webhook_url = webhook_url

    def run(self, model_id: str, model_input: Dict[str, Any]) -> str:
        output = self.client.run(model_id, input=model_input)
        url = _output_url(output)
        if not url:
            raise ProviderError(f"{model_id} returned no output")
        return url

    def create_prediction(self, model_id: str, model_input: Dict[str, Any]) -> str:
        params: Dict[str, Any] = {"input": model_input}
        if self.webhook_url:
            params["webhook"] = self.webhook_url
            params["webhook_events_filter"] = ["completed"]
        # owner/name:hash pins a version
        if ":" in model_id:
            params["version"] = model_id.split(":", 1)[1]
        else:
            params["model"] = model_id
        prediction = self.client.predictions.create(**params)
        return prediction.id

    def get_prediction(self, prediction_id: str) -> Prediction:
        prediction = self.client.predictions.get(prediction_id)
        return Prediction(
            id=prediction.id,
            status=prediction.status,
            output_url=_output_url(prediction.output),
            error=str(prediction.error) if prediction.error else None,
        )


def _output_url(output: Any) -> Optional[str]:
    if output is None:
        return None
    raw = output[0] if isinstance(output, (list, tuple)) and output else output
    if isinstance(raw, (list, tuple)):
        return None
    url = getattr(raw, "url", None)
    if callable(url):
        url = url()
    return str(url or raw)


def build_model_input(model: ModelConfig, prompt: str, width: int = 1024, height: int = 1024) -> Dict[str, Any]:
    model_id = model.id
    model_input: Dict[str, Any] = {"prompt": prompt}
    if "imagen" in model_id or model_id.startswith("google/"):
        model_input.update(aspect_ratio="1:1", safety_filter_level="block_only_high", output_format="png")
    elif "flux" in model_id or model_id.startswith("black-forest-labs/"):
        model_input.update(raw=False, aspect_ratio="1:1", output_format="png", safety_tolerance=2)
    elif "lucid-origin" in model_id or model_id.startswith("leonardoai/"):
        model_input.update(width=width, height=height, num_outputs=1, output_format="png")
    elif "recraft" in model_id:
        model_input.update(size=f"{width}x{height}", style="realistic_image")
    else:
        model_input.update(aspect_ratio="1:1", output_format="png")
        if not model.is_synchronous:
            model_input["output_quality"] = 90
    return model_input


class ModelAdapter:
    """Uniform front for generation, background removal, mockups and upscaling.

    Every call returns :class:`ModelOutput` entries instead of raising, so one
    failing model never takes its siblings down with it.
    """

    def __init__(
        self,
        provider: ImageProvider,
        models: List[ModelConfig],
        *,
        rembg_model: ModelConfig,
        mockup_model: ModelConfig,
        upscale_model: ModelConfig,
        mockup_base_url: str = "",
    ):
        self.provider = provider
        self.models = list(models)
        self.rembg_model = rembg_model
        self.mockup_model = mockup_model
        self.upscale_model = upscale_model
        self.mockup_base_url = mockup_base_url

    @classmethod
    def from_settings(cls, config: Settings, provider: ImageProvider) -> "ModelAdapter":
        return cls(
            provider,
            config.image_models,
            rembg_model=config.rembg_model,
            mockup_model=config.mockup_model,
            upscale_model=config.upscale_model,
            mockup_base_url=config.mockup_base_url,
        )

    def select_models(self, model_ids: Optional[List[str]] = None) -> List[ModelConfig]:
        if not model_ids:
            return list(self.models)
        return [m for m in self.models if m.id in model_ids]

    def generate(
        self,
        prompt: str,
        style: StyleOptions,
        model_ids: Optional[List[str]] = None,
        width: int = 1024,
        height: int = 1024,
    ) -> GenerationResult:
        models = self.select_models(model_ids)
        final_prompt = build_print_prompt(prompt, style)
        logger.info(f"Generating with {len(models)} model(s): {[m.name for m in models]}")

        outputs: List[ModelOutput] = []
        if models:
            with ThreadPoolExecutor(max_workers=len(models)) as pool:
                futures = [
                    pool.submit(self._call, m, build_model_input(m, final_prompt, width, height)) for m in models
                ]
                for model, future in zip(models, futures):
                    try:
                        outputs.append(future.result())
                    except Exception as exc:
                        outputs.append(_failed(model, exc))

        ok = sum(1 for o in outputs if o.status != "failed")
        logger.info(f"Generation dispatched: {ok}/{len(models)} model(s) without error")
        return GenerationResult(
            id=f"multi-model-{int(time.time() * 1000)}",
            is_multi_model=len(models) > 1,
            outputs=outputs,
        )

    def remove_background(self, image_url: str) -> ModelOutput:
        return self._call(self.rembg_model, {"image": image_url})

    def create_mockup(self, params: MockupInput) -> ModelOutput:
        model_input = {
            "prompt": build_mockup_prompt(params),
            "image_input": [mockup_base_image(self.mockup_base_url, params), params.garment_image_url],
            "aspect_ratio": "1:1",
            "output_format": "png",
        }
        return self._call(self.mockup_model, model_input)

    def upscale(self, image_url: str) -> ModelOutput:
        return self._call(self.upscale_model, {"image": image_url, "style": "realistic_image", "size": "2048x2048"})

    def get_prediction(self, prediction_id: str) -> Prediction:
        return self.provider.get_prediction(prediction_id)

    def fetch(self, url: str) -> bytes:
        return self.provider.fetch(url)

    def _call(self, model: ModelConfig, model_input: Dict[str, Any]) -> ModelOutput:
        entry = ModelOutput(model_id=model.id, model_name=model.name, is_synchronous=model.is_synchronous)
        try:
            if model.is_synchronous:
                entry.url = self.provider.run(model.id, model_input)
                entry.status = "succeeded"
            else:
                entry.prediction_id = self.provider.create_prediction(model.id, model_input)
                entry.status = "processing"
        except Exception as exc:
            return _failed(model, exc)
        logger.info(f"{model.name}: {entry.status} url={entry.url} prediction={entry.prediction_id}")
        return entry


def _failed(model: ModelConfig, exc: Exception) -> ModelOutput:
    logger.error(f"{model.name} failed: {exc}")
    return ModelOutput(
        model_id=model.id,
        model_name=model.name,
        is_synchronous=model.is_synchronous,
        status="failed",
        error=str(exc) or exc.__class__.__name__,
    )


def get_provider(config: Settings) -> ImageProvider:
    if config.image_provider == "replicate":
        webhook = config.callback_url or f"{config.public_base_url.rstrip('/')}/ai/replicate/callback"
        return ReplicateProvider(config.replicate_api_token, timeout_s=config.request_timeout_s, webhook_url=webhook)
    return MockProvider(timeout_s=config.request_timeout_s)


def prediction_from_payload(payload: Dict[str, Any]) -> Prediction:
    """Prediction from a provider webhook body (same shape as ``predictions.get``)."""
    error = payload.get("error")
    return Prediction(
        id=str(payload["id"]),
        status=payload.get("status", "processing"),
        output_url=_output_url(payload.get("output")),
        error=str(error) if error else None,
    )
