"""Application configuration via environment variables."""

from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Backend
    base_url: str = "http://localhost:8000"
    api_prefix: str = "/api/v1"
    api_key: Optional[str] = None
    use_mock: bool = False
    request_timeout_seconds: float = 30.0

    # Local job registry
    storage_dir: str = str(Path.home() / ".autofill")
    jobs_storage_key: str = "autofill_jobs_v1"

    # Polling
    poll_backoff_seconds: List[float] = [1.0, 2.0, 3.0, 5.0, 8.0, 10.0]
    poll_initial_delay_seconds: float = 0.35
    background_interval_seconds: float = 5.0
    background_hidden_interval_seconds: float = 10.0
    background_initial_delay_seconds: float = 1.2

    # Simulated backend (only when use_mock=true)
    mock_failure_rate: float = 0.12
    mock_seed: Optional[int] = None

    log_level: str = "INFO"

    model_config = {
        "env_prefix": "AUTOFILL_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @property
    def api_root(self) -> str:
        """Base URL joined with the API prefix, without trailing slash."""
        return f"{self.base_url.rstrip('/')}{self.api_prefix}"

    @property
    def jobs_storage_path(self) -> Path:
        return Path(self.storage_dir).expanduser() / f"{self.jobs_storage_key}.json"
