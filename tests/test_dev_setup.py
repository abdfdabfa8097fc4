import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from scripts import dev_setup


def test_update_env_file_merges_and_backs_up(tmp_path):
    env_path = tmp_path / ".env"
    env_path.write_text("# local settings\nSECRET_KEY=keep-me\nTEXT_MODEL_NAME=old-model\n")

    args = dev_setup.parse_args(
        [
            "--env-path",
            str(env_path),
            "--openai-api-key",
            "sk-abcdef123456",
            "--text-model",
            "gpt-4o",
            "--chapter-count",
            "-3",
            "--skip-check",
        ]
    )
    values = dev_setup.update_env_file(args)

    assert values["SECRET_KEY"] == "keep-me"
    assert values["TEXT_MODEL_NAME"] == "gpt-4o"
    assert values["DEFAULT_CHAPTER_COUNT"] == "1"
    assert dev_setup.read_env(env_path) == values
    assert (tmp_path / ".env.bak").exists()


def test_redact_hides_secrets():
    assert dev_setup.redact("OPENAI_API_KEY", "sk-abcdef123456") == "sk-a…"
    assert dev_setup.redact("TEXT_MODEL_NAME", "gpt-4o") == "gpt-4o"
