from __future__ import annotations

import logging


def configure_app_logging(level: str = "INFO") -> None:
    """
    Set the level for the `orgauthz` logger tree.

    Notes:
    - Uvicorn already configures handlers; this only sets levels for our package.
    - `ORGAUTHZ_LOG_LEVEL=DEBUG` shows cache hits/misses and bypass decisions.
    """

    normalized = level.upper()
    logging.getLogger("orgauthz").setLevel(normalized)
    logging.getLogger("orgauthz").propagate = True
