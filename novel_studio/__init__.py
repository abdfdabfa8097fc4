from __future__ import annotations

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask

from .config import Config
from .extensions import init_pipeline
from .services.generation import GenerationClient


BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def create_app(
    config_class: type[Config] = Config,
    *,
    generation_client: Optional[GenerationClient] = None,
) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    init_pipeline(app, client=generation_client)
    register_blueprints(app)

    return app


def register_blueprints(app: Flask) -> None:
    from .studio import bp as studio_bp

    app.register_blueprint(studio_bp)
