from __future__ import annotations

import logging


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str) -> None:
    # Operator scripts log to stderr so stdout stays reserved for the report.
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
