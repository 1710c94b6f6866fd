import logging

logger = logging.getLogger(__name__)
# handlers and levels are up to the application
logger.addHandler(logging.NullHandler())
