"""Utility script to write the .env file used by the studio and check that the app boots."""
from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Dict

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from novel_studio import create_app
from novel_studio.extensions import get_coordinator

DEFAULT_ENV_PATH = REPO_ROOT / ".env"
BACKUP_SUFFIX = ".bak"
SECRET_KEYS = {"SECRET_KEY", "OPENAI_API_KEY"}


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Create or update a .env file with the Flask and provider settings required for local "
            "development, then check that the application starts."
        )
    )
    parser.add_argument(
        "--flask-app",
        default="wsgi.py",
        help="Entry point used by Flask (default: wsgi.py)",
    )
    parser.add_argument(
        "--secret-key",
        required=False,
        help=(
            "Secret key for Flask sessions. If omitted, the current value in .env is preserved or "
            "fallback defaults are used."
        ),
    )
    parser.add_argument(
        "--openai-api-key",
        help="API key for the generation provider (optional).",
    )
    parser.add_argument(
        "--text-model",
        help="Model used for concept, character, outline and scene generation (optional).",
    )
    parser.add_argument(
        "--image-model",
        help="Model used for image generation (optional).",
    )
    parser.add_argument(
        "--branches",
        choices=("true", "false"),
        help="Default for the branching narrative setting (optional).",
    )
    parser.add_argument(
        "--chapter-count",
        type=int,
        help="Default target chapter count; values below one are stored as one (optional).",
    )
    parser.add_argument(
        "--env-path",
        type=Path,
        default=DEFAULT_ENV_PATH,
        help="Path to the .env file that should be created/updated.",
    )
    parser.add_argument(
        "--skip-check",
        action="store_true",
        help="Only update the .env file without starting the application.",
    )
    return parser.parse_args(argv)


def read_env(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}
    data: Dict[str, str] = {}
    for line in path.read_text().splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, _, value = stripped.partition("=")
        data[key.strip()] = value.strip()
    return data


def write_env(path: Path, values: Dict[str, str]) -> None:
    if path.exists():
        backup_path = path.with_suffix(path.suffix + BACKUP_SUFFIX)
        shutil.copy(path, backup_path)
        print(f"Existing {path.name} backed up to {backup_path.name}.")
    lines = [f"{key}={value}" for key, value in values.items()]
    path.write_text("\n".join(lines) + "\n")
    print(f"Updated environment variables written to {path}.")


def update_env_file(args: argparse.Namespace) -> Dict[str, str]:
    env_data = read_env(args.env_path)
    env_updates = {"FLASK_APP": args.flask_app}
    if args.secret_key:
        env_updates["SECRET_KEY"] = args.secret_key
    if args.openai_api_key:
        env_updates["OPENAI_API_KEY"] = args.openai_api_key
    if args.text_model:
        env_updates["TEXT_MODEL_NAME"] = args.text_model
    if args.image_model:
        env_updates["IMAGE_MODEL_NAME"] = args.image_model
    if args.branches:
        env_updates["DEFAULT_HAS_BRANCHES"] = args.branches
    if args.chapter_count is not None:
        env_updates["DEFAULT_CHAPTER_COUNT"] = str(max(1, args.chapter_count))

    env_data.update(env_updates)
    write_env(args.env_path, env_data)
    return env_data


def redact(key: str, value: str) -> str:
    if key not in SECRET_KEYS or not value:
        return value
    return value[:4] + "…" if len(value) > 8 else "…"


def check_application() -> None:
    app = create_app()
    with app.app_context():
        coordinator = get_coordinator()
        provider = "configured" if coordinator.client is not None else "not configured"
        settings = coordinator.store.settings
    print(f"Application started; generation provider {provider}.")
    print(f"Default settings: branches={settings.has_branches}, chapters={settings.chapter_count}.")


def main(argv=None) -> None:
    args = parse_args(argv)
    env_values = update_env_file(args)

    if not args.skip_check:
        check_application()
    else:
        print("Application check skipped.")

    print("\nSetup complete! Summary:")
    for key in sorted(env_values):
        print(f"  {key}={redact(key, env_values[key])}")


if __name__ == "__main__":
    main()
