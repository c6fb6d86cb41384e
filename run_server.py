# run_server.py
import uvicorn

from storefront.core.config import settings
from storefront.main import app

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        log_level=settings.LOG_LEVEL.lower(),
        proxy_headers=True,
    )
