import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the API process and Celery workers"""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # SQL echo is too noisy outside debugging sessions
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
