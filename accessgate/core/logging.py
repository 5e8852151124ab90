from __future__ import annotations

import logging

from accessgate.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging(level: str | None = None) -> None:
    # Configure the root logger once; repeated app factories only adjust the level.
    global _configured
    resolved = (level or get_settings().log_level).upper()
    root = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
        _configured = True
    root.setLevel(resolved)
    # SQLAlchemy engine logging is controlled by db_echo, keep it quiet otherwise.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
