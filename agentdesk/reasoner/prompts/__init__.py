from functools import lru_cache
from pathlib import Path
from typing import Dict, Sequence

import yaml

PROMPTS_DIR = Path(__file__).parent


@lru_cache(maxsize=None)
def _read_profile(profile: str) -> Dict[str, str]:
    path = PROMPTS_DIR / f"{profile}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"Prompt file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise TypeError(f"YAML root must be a mapping: {path}")
    return data


def load_prompts(profile: str, required_keys: Sequence[str]) -> Dict[str, str]:
    """Load the prompt templates of ``<profile>.yaml`` and check the required keys are present."""
    data = _read_profile(profile)
    missing = [k for k in required_keys if not isinstance(data.get(k), str) or not data[k].strip()]
    if missing:
        raise KeyError(f"Missing/empty prompt keys in {profile}.yaml: {missing}")
    return dict(data)
