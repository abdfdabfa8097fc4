from __future__ import annotations

from typing import Any, Dict

from flask import current_app, jsonify, request

from ..extensions import get_coordinator, get_store
from ..models import Stage
from ..services.errors import PipelineError
from ..store import ArtifactNotFoundError, ArtifactUpdateError, collection_for
from . import bp


ERROR_STATUS: Dict[str, int] = {
    "prerequisite": 409,
    "empty_input": 400,
    "invalid_option": 400,
    "busy": 429,
    "parse": 502,
    "provider": 502,
}

# Camel-case request keys accepted for image options.
OPTION_KEYS = {
    "imageKind": "image_kind",
    "image_kind": "image_kind",
    "aspectRatio": "aspect_ratio",
    "aspect_ratio": "aspect_ratio",
    "characterId": "character_id",
    "character_id": "character_id",
}

# Request keys that map to snake_case artifact fields.
PATCH_KEYS = {
    "aspectRatio": "aspect_ratio",
}


def _serialize(artifact: Any) -> Any:
    if hasattr(artifact, "to_dict"):
        return artifact.to_dict()
    if isinstance(artifact, (list, tuple)):
        return [_serialize(item) for item in artifact]
    return artifact


def _error_response(error: PipelineError):
    return jsonify(error.to_dict()), ERROR_STATUS.get(error.kind, 400)


def _stage_response(result):
    if not result.ok:
        return _error_response(result.error)
    return jsonify(
        {
            "stage": result.stage.value,
            "artifact": _serialize(result.artifact),
            "prompt": result.prompt,
        }
    )


@bp.route("/state", methods=["GET"])
def state():
    coordinator = get_coordinator()
    payload = coordinator.store.snapshot().to_dict()
    payload["stages"] = coordinator.stage_status()
    return jsonify(payload)


@bp.route("/settings", methods=["PUT"])
async def update_settings():
    payload = request.get_json(silent=True)
    result = await get_coordinator().advance(Stage.SETTINGS, payload)
    return _stage_response(result)


@bp.route("/stages/<stage>", methods=["POST"])
async def advance_stage(stage: str):
    payload = request.get_json(silent=True) or {}
    if Stage.from_value(stage) is Stage.SETTINGS:
        return await update_settings()

    prompt_raw = payload.get("prompt", "")
    prompt = prompt_raw if isinstance(prompt_raw, str) else str(prompt_raw or "")
    options = {
        option: payload[key]
        for key, option in OPTION_KEYS.items()
        if key in payload and payload[key] is not None
    }

    try:
        result = await get_coordinator().advance(stage, prompt, **options)
    except Exception:  # pragma: no cover - defensive logging
        current_app.logger.exception("Unexpected error while advancing stage %s", stage)
        return jsonify({"error": "We couldn't run this stage right now. Please try again."}), 500

    return _stage_response(result)


@bp.route("/concept", methods=["PUT"])
def edit_concept():
    payload = request.get_json(silent=True) or {}
    text = payload.get("text")
    if not isinstance(text, str):
        return jsonify({"error": "Provide the concept text as a string."}), 400
    get_store().set_concept(text)
    return jsonify({"concept": text})


@bp.route("/<collection>/<item_id>", methods=["PATCH"])
def edit_artifact(collection: str, item_id: str):
    items = collection_for(get_store(), collection)
    if items is None:
        return jsonify({"error": "Unknown collection."}), 404

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Provide the fields to update as a JSON object."}), 400
    patch = {PATCH_KEYS.get(key, key): value for key, value in payload.items()}

    try:
        updated = items.update(item_id, patch)
    except ArtifactNotFoundError:
        return jsonify({"error": "We couldn't find that item."}), 404
    except ArtifactUpdateError as exc:
        return jsonify({"error": str(exc)}), 400

    return jsonify(updated.to_dict())


@bp.route("/<collection>/<item_id>", methods=["DELETE"])
def delete_artifact(collection: str, item_id: str):
    items = collection_for(get_store(), collection)
    if items is None:
        return jsonify({"error": "Unknown collection."}), 404
    items.delete(item_id)
    return "", 204
