"""Admin product wizard: describe -> review -> generate -> success.

The wizard never chains paid steps on its own. While in ``generate`` it only
re-reads the status projection; every job is started by an explicit call.
"""
from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Dict, List, Optional

import httpx

from itp_studio.client.api import StudioClient
from itp_studio.core.errors import PromptValidationError, StudioError

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 2.0
MOCKUPS_REQUIRED = 2


class WizardStep(str, enum.Enum):
    DESCRIBE = "describe"
    REVIEW = "review"
    GENERATE = "generate"
    SUCCESS = "success"


class WizardStateError(Exception):
    pass


def enrich_prompt(
    prompt: str,
    target_audience: str = "",
    primary_colors: str = "",
    design_style: str = "",
    category: str = "",
) -> str:
    lines = [prompt.strip()]
    if target_audience:
        lines.append(f"Target Audience: {target_audience}")
    if primary_colors:
        lines.append(f"Primary Colors: {primary_colors}")
    if design_style:
        lines.append(f"Design Style: {design_style}")
    if category:
        lines.append(f"Product Category: {category}")
    return "\n".join(lines)


class Wizard:
    def __init__(self, client: StudioClient, poll_interval_s: float = POLL_INTERVAL_S):
        self.client = client
        self.poll_interval_s = poll_interval_s
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._reset()

    def _reset(self) -> None:
        self.step = WizardStep.DESCRIBE
        self.product_id: Optional[int] = None
        self.normalized: Dict[str, Any] = {}
        self.product: Dict[str, Any] = {}
        self.jobs: List[Dict[str, Any]] = []
        self.assets: List[Dict[str, Any]] = []
        self.error: Optional[str] = None

    # ── steps ────────────────────────────────────────────────────────────────
    def submit(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self._require(WizardStep.DESCRIBE)
        if not str(request.get("prompt", "")).strip():
            self.error = "Please describe your product idea"
            raise PromptValidationError(self.error)
        self.error = None
        try:
            created = self.client.create_product(request)
        except StudioError as exc:
            self.error = exc.message
            raise
        with self._lock:
            self.product_id = created["product_id"]
            self.product = created["product"]
            self.normalized = created["normalized"]
            self.jobs = created["jobs"]
            self.step = WizardStep.REVIEW
        logger.info(f"Wizard: product {self.product_id} created, reviewing")
        return created

    def confirm(self) -> None:
        self._require(WizardStep.REVIEW)
        self.step = WizardStep.GENERATE

    def refresh(self) -> Dict[str, Any]:
        if self.product_id is None:
            raise WizardStateError("No product yet")
        status = self.client.status(self.product_id)
        with self._lock:
            self.product = status["product"]
            self.jobs = status["jobs"]
            self.assets = status["assets"]
        return status

    def finish(self) -> None:
        self._require(WizardStep.GENERATE)
        if not self.mockups_ready():
            raise WizardStateError("Both mockups must finish first")
        self.stop_polling()
        self.step = WizardStep.SUCCESS

    def approve(self) -> Dict[str, Any]:
        self._require(WizardStep.SUCCESS)
        return self._act(self.client.approve, self.product_id)

    def start_over(self) -> None:
        self.stop_polling()
        with self._lock:
            self._reset()

    # ── manual pipeline actions (generate step only) ─────────────────────────
    def remove_background(self) -> Optional[Dict[str, Any]]:
        self._require(WizardStep.GENERATE)
        return self._act(self.client.remove_background, self.product_id)

    def skip_to_mockups(self) -> Optional[Dict[str, Any]]:
        self._require(WizardStep.GENERATE)
        return self._act(self.client.create_mockups, self.product_id, skip_background_removal=True)

    def create_mockups(self) -> Optional[Dict[str, Any]]:
        self._require(WizardStep.GENERATE)
        return self._act(self.client.create_mockups, self.product_id)

    def select_image(self, asset_id: int) -> Optional[Dict[str, Any]]:
        self._require(WizardStep.GENERATE)
        return self._act(self.client.select_image, self.product_id, asset_id)

    def regenerate(self) -> Optional[Dict[str, Any]]:
        self._require(WizardStep.GENERATE)
        return self._act(self.client.regenerate, self.product_id)

    # ── polling ──────────────────────────────────────────────────────────────
    def start_polling(self) -> None:
        self._require(WizardStep.GENERATE)
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._poll_loop, name="wizard-poller", daemon=True)
        self._thread.start()

    def stop_polling(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=self.poll_interval_s * 2)
        self._thread = None

    @property
    def is_polling(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _poll_loop(self) -> None:
        while not self._stop.is_set() and self.step == WizardStep.GENERATE:
            try:
                self.refresh()
            except (StudioError, httpx.HTTPError) as exc:
                logger.warning(f"Wizard: status poll failed: {exc}")
            self._stop.wait(self.poll_interval_s)

    # ── derived state ────────────────────────────────────────────────────────
    def jobs_of(self, job_type: str) -> List[Dict[str, Any]]:
        return [j for j in self.jobs if j["type"] == job_type]

    def mockups_ready(self) -> bool:
        done = [j for j in self.jobs_of("mockup") if j["status"] == "succeeded"]
        return len(done) >= MOCKUPS_REQUIRED

    def assets_of(self, kind: str) -> List[Dict[str, Any]]:
        return [a for a in self.assets if a["kind"] == kind]

    def _require(self, step: WizardStep) -> None:
        if self.step != step:
            raise WizardStateError(f"Not allowed in step {self.step.value!r} (needs {step.value!r})")

    def _act(self, fn, *args, **kwargs) -> Optional[Dict[str, Any]]:
        self.error = None
        try:
            return fn(*args, **kwargs)
        except StudioError as exc:
            self.error = exc.message
            logger.error(f"Wizard: {fn.__name__} failed: {exc.message}")
            return None
