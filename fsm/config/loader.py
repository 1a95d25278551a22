import yaml
from pathlib import Path
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # Accept a flat cache section written as "cache_*" keys at the root
    cache_keys = {k: data.pop(k) for k in list(data) if k.startswith("cache_")}
    if cache_keys:
        cache = data.setdefault("cache", {})
        for key, value in cache_keys.items():
            cache.setdefault(key[len("cache_"):], value)

    return AppConfig(**data)
