"""
The main jjspr package.
"""
import logging
import sys

# Default format for logs
LOG_FORMAT = '%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

def setup_logging(verbose: int = 0) -> None:
    """Setup logging with appropriate level based on verbosity.

    Args:
        verbose: Verbosity level
            0 = INFO and above (shows jj/github calls)
            1 = Same as 0, kept so -v stays a valid flag
            2 = DEBUG and above
    """
    if verbose >= 2:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove any existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    logger.addHandler(handler)

# Quiet third-party loggers that are chatty at INFO
logging.getLogger("urllib3").setLevel(logging.WARNING)
