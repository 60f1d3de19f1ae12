# src/epochflow/api/__main__.py
from __future__ import annotations

import os

import uvicorn

from epochflow.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so EPOCHFLOW_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (prevents "config read before env" surprises)
    from epochflow.api.app import create_app
    from epochflow.runtime.engine_boot import engine_config_from_env

    cfg = engine_config_from_env()
    host = os.getenv("EPOCHFLOW_API_HOST", cfg.api_host)
    port = int(os.getenv("EPOCHFLOW_API_PORT", str(cfg.api_port)))
    log_level = os.getenv("EPOCHFLOW_LOG_LEVEL", cfg.log_level)
    os.environ.setdefault("EPOCHFLOW_LOG_LEVEL", log_level)

    uvicorn.run(create_app(), host=host, port=port, log_level=log_level.lower())


if __name__ == "__main__":
    main()
