import logging

from rich.logging import RichHandler

from modelops.core.logs import configure_logging


def test_configure_logging_installs_single_rich_handler():
    configure_logging()
    logger = configure_logging(verbose=True)

    handlers = [h for h in logger.handlers if isinstance(h, RichHandler)]
    assert len(handlers) == 1
    assert logger.level == logging.DEBUG
    assert logger.propagate is False
