import logging
import os

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging():
    """
    Configure application logging from environment variables.

    LOG_LEVEL sets the level for the engine modules; AZURE_LOG_LEVEL keeps the
    Azure SDK's HTTP pipeline logging quiet unless explicitly raised.
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level_value = getattr(logging, log_level, logging.INFO)

    logging.basicConfig(
        level=log_level_value,
        format=LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    azure_level = os.getenv("AZURE_LOG_LEVEL", "WARNING").upper()
    logging.getLogger("azure").setLevel(getattr(logging, azure_level, logging.WARNING))
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured with level: {log_level}")
