import time

import pytest
from fastapi.testclient import TestClient

from itp_studio.client.api import StudioClient
from itp_studio.client.wizard import Wizard, WizardStateError, WizardStep, enrich_prompt
from itp_studio.core.errors import PromptValidationError
from itp_studio.main import create_app

from conftest import FLUX, RECRAFT


@pytest.fixture
def wizard(client):
    return Wizard(StudioClient(client=client), poll_interval_s=0.01)


def test_steps_only_move_forward(wizard):
    with pytest.raises(WizardStateError):
        wizard.confirm()
    with pytest.raises(WizardStateError):
        wizard.remove_background()

    wizard.submit({"prompt": "red mug"})
    assert wizard.step == WizardStep.REVIEW
    assert wizard.normalized["title"] == "Red Mug"
    with pytest.raises(WizardStateError):
        wizard.submit({"prompt": "red mug"})

    wizard.confirm()
    assert wizard.step == WizardStep.GENERATE
    with pytest.raises(WizardStateError):
        wizard.finish()


def test_blank_prompt_stays_in_describe(wizard):
    with pytest.raises(PromptValidationError):
        wizard.submit({"prompt": "  "})
    assert wizard.step == WizardStep.DESCRIBE
    assert wizard.error == "Please describe your product idea"


def test_action_errors_are_shown_not_raised(wizard):
    wizard.submit({"prompt": "red mug"})
    wizard.confirm()
    assert wizard.skip_to_mockups() is None
    assert wizard.error == "No image available for mockups"


def test_full_wizard(wizard, services):
    wizard.submit({"prompt": "red mug"})
    wizard.confirm()
    services.processor.tick()
    wizard.refresh()
    assert len(wizard.assets_of("source")) == 1

    jobs = wizard.skip_to_mockups()["jobs"]
    assert len(jobs) == 2
    services.processor.tick()
    wizard.refresh()
    assert wizard.mockups_ready()

    wizard.finish()
    assert wizard.step == WizardStep.SUCCESS
    product = wizard.approve()
    assert product["status"] == "active"

    wizard.start_over()
    assert wizard.step == WizardStep.DESCRIBE
    assert wizard.product_id is None and wizard.jobs == []


def test_polling_runs_until_stopped(wizard, services):
    wizard.submit({"prompt": "red mug"})
    wizard.confirm()
    services.processor.tick()

    wizard.start_polling()
    deadline = time.time() + 5
    while not wizard.assets and time.time() < deadline:
        time.sleep(0.01)
    assert wizard.assets_of("source")
    assert wizard.is_polling

    wizard.stop_polling()
    assert not wizard.is_polling


def test_select_image_then_finish(make_services):
    services = make_services(models=[FLUX, RECRAFT])
    wizard = Wizard(StudioClient(client=TestClient(create_app(services=services))), poll_interval_s=0.01)
    wizard.submit({"prompt": "red mug"})
    wizard.confirm()
    services.processor.tick()
    wizard.refresh()
    chosen = wizard.assets_of("source")[1]

    result = wizard.select_image(chosen["id"])
    assert result["selected_asset"]["id"] == chosen["id"]
    assert len(result["jobs"]) == 2
    services.processor.tick()
    wizard.refresh()
    assert [a["id"] for a in wizard.assets_of("source")] == [chosen["id"]]
    assert wizard.mockups_ready()

    assert wizard.select_image(999) is None
    assert wizard.error == "Asset 999 not found"

def test_enrich_prompt():
    assert enrich_prompt("red mug", design_style="retro") == "red mug\nDesign Style: retro"
