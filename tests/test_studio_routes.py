import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from novel_studio import create_app
from novel_studio.config import TestConfig
from novel_studio.extensions import get_coordinator
from novel_studio.services.generation import GenerationClient


class DummyClient(GenerationClient):
    def __init__(self):
        self.responses = []
        self.prompts = []

    async def run(self, request):
        self.prompts.append(request.prompt)
        return self.responses.pop(0)


@pytest.fixture
def generator():
    return DummyClient()


@pytest.fixture
def app_instance(generator):
    app = create_app(TestConfig, generation_client=generator)
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


def _seed(app_instance):
    store = get_coordinator().store
    store.set_concept("A lighthouse keeper hears the sea speak.")
    ava = store.characters.create(
        store.characters.build(name="Ava", personality="stoic", appearance="tall", backstory="ex-soldier")
    )
    store.outline.replace_all([store.outline.build(title="Arrival", summary="Ava reaches the harbor.")])
    return ava


def test_state_lists_artifacts_and_stage_readiness(client):
    response = client.get("/api/state")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["settings"] == {"hasBranches": False, "chapterCount": 12}
    assert payload["concept"] == ""
    assert payload["stages"]["concept"]["ready"] is True
    assert payload["stages"]["characters"]["ready"] is False


def test_settings_endpoint_coerces_chapter_count(client):
    response = client.put("/api/settings", json={"hasBranches": True, "chapterCount": -5})

    assert response.status_code == 200
    assert response.get_json()["artifact"] == {"hasBranches": True, "chapterCount": 1}
    assert client.get("/api/state").get_json()["settings"]["chapterCount"] == 1


def test_settings_endpoint_rejects_empty_payload(client):
    response = client.put("/api/settings", json={})

    assert response.status_code == 400
    assert response.get_json()["kind"] == "empty_input"


def test_stage_prerequisite_failure_returns_conflict(client, generator):
    response = client.post("/api/stages/characters", json={"prompt": "A stern veteran"})

    assert response.status_code == 409
    payload = response.get_json()
    assert payload["kind"] == "prerequisite"
    assert payload["unmet"] == "Please generate a concept first."
    assert generator.prompts == []


def test_concept_stage_commits(client, generator):
    generator.responses.append("A harbor town where the tide keeps secrets.")

    response = client.post("/api/stages/concept", json={"prompt": "Lighthouse keeper"})

    assert response.status_code == 200
    assert response.get_json()["artifact"] == "A harbor town where the tide keeps secrets."
    assert client.get("/api/state").get_json()["concept"].startswith("A harbor town")


def test_character_parse_error_returns_bad_gateway(client, generator, app_instance):
    get_coordinator().store.set_concept("Harbor mystery")
    generator.responses.append(json.dumps({"name": "Ava"}))

    response = client.post("/api/stages/characters", json={"prompt": "A stern veteran"})

    assert response.status_code == 502
    assert response.get_json()["kind"] == "parse"
    assert client.get("/api/state").get_json()["characters"] == []


def test_image_stage_passes_options(client, generator, app_instance):
    _seed(app_instance)
    generator.responses.append("data:image/png;base64,AAA")

    response = client.post(
        "/api/stages/image",
        json={"prompt": "Harbor at dusk", "imageKind": "background", "aspectRatio": "16:9"},
    )

    assert response.status_code == 200
    artifact = response.get_json()["artifact"]
    assert artifact["kind"] == "background"
    assert artifact["aspectRatio"] == "16:9"


def test_background_image_defaults_to_landscape(client, generator, app_instance):
    _seed(app_instance)
    generator.responses.append("data:image/png;base64,AAA")

    response = client.post("/api/stages/image", json={"prompt": "Harbor at dusk", "imageKind": "background"})

    assert response.status_code == 200
    assert response.get_json()["artifact"]["aspectRatio"] == "16:9"


def test_image_stage_autofills_from_character_id(client, generator, app_instance):
    ava = _seed(app_instance)
    generator.responses.append("data:image/png;base64,AAA")

    response = client.post("/api/stages/image", json={"characterId": ava.id})

    assert response.status_code == 200
    artifact = response.get_json()["artifact"]
    assert artifact["prompt"] == "A portrait of Ava. Appearance: tall. Personality: stoic"
    assert artifact["aspectRatio"] == "9:16"


def test_settings_endpoint_rejects_non_boolean_branches(client):
    response = client.put("/api/settings", json={"hasBranches": 0, "chapterCount": 3})

    assert response.status_code == 502
    assert response.get_json()["kind"] == "parse"
    assert client.get("/api/state").get_json()["settings"]["hasBranches"] is False


def test_image_stage_rejects_unknown_ratio(client, app_instance):
    _seed(app_instance)

    response = client.post("/api/stages/image", json={"prompt": "Harbor", "aspectRatio": "2:1"})

    assert response.status_code == 400
    assert response.get_json()["kind"] == "invalid_option"


def test_missing_provider_reports_bad_gateway():
    app = create_app(TestConfig)
    response = app.test_client().post("/api/stages/concept", json={"prompt": "Idea"})

    assert response.status_code == 502
    assert response.get_json()["kind"] == "provider"


def test_edit_concept_and_character(client, app_instance):
    ava = _seed(app_instance)

    concept_response = client.put("/api/concept", json={"text": "Edited by hand."})
    character_response = client.patch(f"/api/characters/{ava.id}", json={"personality": "warm"})

    assert concept_response.status_code == 200
    assert character_response.status_code == 200
    assert character_response.get_json()["id"] == ava.id
    state = client.get("/api/state").get_json()
    assert state["concept"] == "Edited by hand."
    assert state["characters"][0]["personality"] == "warm"


def test_edit_rejects_immutable_and_unknown(client, app_instance):
    ava = _seed(app_instance)

    assert client.patch(f"/api/characters/{ava.id}", json={"id": "char_x"}).status_code == 400
    assert client.patch("/api/characters/char_missing", json={"name": "x"}).status_code == 404
    assert client.patch(f"/api/villains/{ava.id}", json={"name": "x"}).status_code == 404


def test_delete_is_idempotent(client, app_instance):
    ava = _seed(app_instance)

    first = client.delete(f"/api/characters/{ava.id}")
    second = client.delete(f"/api/characters/{ava.id}")

    assert first.status_code == second.status_code == 204
    state = client.get("/api/state").get_json()
    assert state["characters"] == []
    # No cascade into the outline.
    assert len(state["outline"]) == 1
