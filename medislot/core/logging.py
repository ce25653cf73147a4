import logging

from medislot.core import config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    global _configured

    if _configured:
        return

    logging.basicConfig(level=(level or config.LOG_LEVEL).upper(), format=LOG_FORMAT)
    # SQL echo goes through the sqlalchemy.engine logger.
    if config.SQL_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    _configured = True
