"""Run the server with uvicorn: ``python -m api`` (from backend/) or ``toolmesh``."""

import logging

import uvicorn

from config.settings import settings


def main() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("api.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
