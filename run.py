"""Run the pidwatch service."""

import uvicorn

from pidwatch.config import config

if __name__ == "__main__":
    uvicorn.run(
        "pidwatch.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )
