import json
from pathlib import Path

from dacite import from_dict

from utils.config import Config

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.json"


def load_config(path: str | Path | None = None) -> Config:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    if not config_path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    try:
        config_dict = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file {config_path}: {e}") from e
    return from_dict(Config, config_dict)
