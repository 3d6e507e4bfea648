from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

_configured = False


def configure_logging(level: str | int = "INFO") -> None:
    """basicConfig una sola vez por proceso (lifespan de la API o CLI)."""
    global _configured
    if _configured:
        logging.getLogger().setLevel(level)
        return

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()],
    )
    # paho loguea cada paquete en DEBUG
    logging.getLogger("paho").setLevel(logging.WARNING)
    _configured = True
