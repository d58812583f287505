"""
Entry point for running pidwatch via `python -m pidwatch`.

Starts the FastAPI server with uvicorn.
"""

import uvicorn

from .config import config


def main():
    """Run the pidwatch server."""
    uvicorn.run(
        "pidwatch.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
