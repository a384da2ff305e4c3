import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
HANDLER_NAME = "rollcall-console"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a console handler to the app loggers once; safe to call again on reload."""
    resolved = getattr(logging, level.upper(), logging.INFO)

    for name in ("backend", "database"):
        logger = logging.getLogger(name)
        logger.setLevel(resolved)
        if not any(h.get_name() == HANDLER_NAME for h in logger.handlers):
            handler = logging.StreamHandler()
            handler.set_name(HANDLER_NAME)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)

    return logging.getLogger("backend")
