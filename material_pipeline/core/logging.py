import logging

from material_pipeline.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level or "INFO").upper(),
        format=LOG_FORMAT,
    )
