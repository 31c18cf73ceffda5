import logging

import config

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def setup_logging(level=None):
    """Configure root logging once; later calls are ignored."""
    global _configured
    if _configured:
        return
    logging.basicConfig(level=(level or config.LOG_LEVEL).upper(), format=LOG_FORMAT)
    # passlib logs a noisy warning about newer bcrypt builds
    logging.getLogger("passlib").setLevel(logging.ERROR)
    _configured = True
