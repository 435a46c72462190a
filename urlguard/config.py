# urlguard/config.py
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DATASET_PATH = "filters/caught.json"


@dataclass
class Settings:
    dataset_path: str = DEFAULT_DATASET_PATH
    host: str = "127.0.0.1"
    port: int = 3000
    reload_interval: float = 300.0  # seconds, 0 disables background reload
    log_level: str = "INFO"
    debug: bool = False


def get_settings(env_file: Optional[str] = None) -> Settings:
    """Build settings from the environment (and a .env file when present)"""
    load_dotenv(env_file)

    return Settings(
        dataset_path=os.getenv("URLGUARD_DATASET_PATH", DEFAULT_DATASET_PATH),
        host=os.getenv("URLGUARD_HOST", "127.0.0.1"),
        port=int(os.getenv("URLGUARD_PORT", "3000")),
        reload_interval=float(os.getenv("URLGUARD_RELOAD_INTERVAL", "300")),
        log_level=os.getenv("URLGUARD_LOG_LEVEL", "INFO").upper(),
        debug=bool(os.getenv("DEBUG")),
    )
