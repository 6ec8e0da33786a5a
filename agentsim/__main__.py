"""Run the control surface with uvicorn: ``python -m agentsim``."""

import logging

import uvicorn

from .config import settings


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "agentsim.main:app",
        host=settings.control_host,
        port=settings.control_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
