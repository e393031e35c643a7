import json as _json
import os
from pathlib import Path

CONFIG_ENV = "LIVEDOWN_CONFIG"
CONFIG_NAME = "livedown.config.json"

_DEFAULTS = {
    "port": 1337,
    "host": "127.0.0.1",
    "poll_interval": 0.05,
    "highlight_style": "monokai",
    "heartbeat": 15,
    "shutdown_delay": 0.1,
    "open_delay": 0.5,
}


def config_path(explicit=None) -> Path:
    if explicit:
        return Path(explicit)
    from_env = os.environ.get(CONFIG_ENV)
    if from_env:
        return Path(from_env)
    return Path.cwd() / CONFIG_NAME


def load_config(path=None, **overrides) -> dict:
    """Defaults, then the JSON config file, then non-None ``overrides``."""
    cfg = dict(_DEFAULTS)
    cfg_path = config_path(path)
    if cfg_path.is_file():
        try:
            with open(cfg_path) as f:
                user = _json.load(f)
            if not isinstance(user, dict):
                raise ValueError("top level must be an object")
            cfg.update({k: v for k, v in user.items() if k in _DEFAULTS})
        except (OSError, ValueError) as e:
            print(f"Warning: could not load {cfg_path.name}: {e}")
    cfg.update({k: v for k, v in overrides.items() if v is not None})

    cfg["port"] = int(cfg["port"])
    cfg["poll_interval"] = max(0.01, float(cfg["poll_interval"]))
    cfg["heartbeat"] = max(1, float(cfg["heartbeat"]))
    return cfg
