from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from wedding_api.core.config import AppConfig
from wedding_api.core.logging import setup_logging
from wedding_api.main import create_app

load_dotenv()
APP_CONFIG = AppConfig.from_env()
setup_logging(APP_CONFIG.logging.level)
LOGGER = logging.getLogger(__name__)

app = create_app(APP_CONFIG)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "web_api:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        server_header=False,
        proxy_headers=APP_CONFIG.security.trust_forwarded_headers,
    )
