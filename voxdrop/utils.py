"""
This module contains utility functions that do not properly belong to any
class or module: logging setup, a timeout decorator for coroutines, and
asyncio wrappers around the few blocking os calls the store needs.
"""

# system imports
#
import asyncio
import atexit
import functools
import json
import logging
import logging.config
import logging.handlers
import os
import sys
from pathlib import Path
from queue import SimpleQueue
from typing import TYPE_CHECKING, Any, Dict, List, Optional

# 3rd party module imports
#
from aiofiles.ospath import wrap as aiofiles_wrap

if TYPE_CHECKING:
    from _typeshed import StrPath

LOG_DIR = Path("/opt/voxdrop/logs")

DEFAULT_LOG_CONFIG_FILES = [
    Path("/opt/voxdrop/voxdrop_log.json"),
    Path("/opt/voxdrop/voxdrop_log.cfg"),
    Path("/etc/voxdrop_log.json"),
    Path("/etc/voxdrop_log.cfg"),
    Path("/usr/local/etc/voxdrop_log.json"),
    Path("/usr/local/etc/voxdrop_log.cfg"),
]

####################################################################
#
# Provide os.fsync as an asyncio function via aiofiles `wrap` async decorator
#
fsync = aiofiles_wrap(os.fsync)


####################################################################
#
def _fsync_dir(dirname: "StrPath") -> None:
    """
    fsync a directory so that a rename in to it is durable. Not every
    platform lets you open a directory, in which case this is a no-op.
    """
    try:
        fd = os.open(str(dirname), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


fsync_dir = aiofiles_wrap(_fsync_dir)


##################################################################
##################################################################
#
class LocalQueueHandler(logging.handlers.QueueHandler):
    """
    Customise the QueueHandler class a little, but only minimally so: there
    is no need to prepare records that go into a local, in-process queue, we
    can skip that process and minimise the cost of logging further.

    This is cribbed from:
         https://www.zopatista.com/python/2019/05/11/asyncio-logging/
    """

    def emit(self, record: logging.LogRecord) -> None:
        # Removed the call to self.prepare(), handle task cancellation
        try:
            self.enqueue(record)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.handleError(record)


############################################################################
#
def setup_asyncio_logging() -> logging.handlers.QueueListener:
    """
    Call this after you have configured all of your log handlers.

    Replace handlers on the root logger with a LocalQueueHandler, and start
    a logging.QueueListener holding the original handlers. The listener
    runs in its own thread so logging calls never block the event loop.

    Returns the listener so the caller may stop it early. It is also
    stopped at exit.
    """
    queue: SimpleQueue = SimpleQueue()
    root = logging.getLogger()

    handlers: List[logging.Handler] = []

    handler = LocalQueueHandler(queue)
    root.addHandler(handler)
    for h in root.handlers[:]:
        if h is not handler:
            root.removeHandler(h)
            handlers.append(h)

    listener = logging.handlers.QueueListener(
        queue, *handlers, respect_handler_level=True
    )
    listener.start()

    # NOTE: to make sure that all queued records get logged on program exit
    #       stop the listener.
    #
    atexit.register(lambda: listener.stop())
    return listener


####################################################################
#
def _load_log_config_file(log_config: Path) -> None:
    if log_config.suffix == ".json":
        cfg = json.loads(log_config.read_text())
        logging.config.dictConfig(cfg)
    else:
        logging.config.fileConfig(str(log_config))


####################################################################
#
def setup_logging(
    log_config: Optional["StrPath"],
    debug: bool,
    audit_dir: Optional["StrPath"] = None,
) -> None:
    """
    Set up the logger.

    If `log_config` is given and exists it is loaded (a `.json` file is a
    logging dict config, anything else is a logging config file). Otherwise
    we look in the default locations for one. If none of those exist we use
    a default config that logs to stderr, or to a rotating file if the log
    dir exists.

    If `audit_dir` is given (and is a directory), account events logged to
    the `voxdrop.audit` logger are written as JSON lines to
    `voxdrop-audit.log` in that directory.
    """
    root_logger = logging.getLogger()

    if debug:
        root_logger.setLevel(logging.DEBUG)

    if log_config is not None:
        log_config = Path(log_config)
        if log_config.exists():
            _load_log_config_file(log_config)
            return
        print(
            f"WARNING: Logging config '{log_config}' does not exist",
            file=sys.stderr,
        )

    for log_config in DEFAULT_LOG_CONFIG_FILES:
        if log_config.exists():
            _load_log_config_file(log_config)
            return

    # If no logging config file is specified then this is what will be used.
    # It is formatted as a logging config dict.
    #
    DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "basic": {
                "format": "[{asctime}] {levelname}:{module}.{funcName}: {message}",
                "style": "{",
            },
            "audit": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "basic",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            "voxdrop": {
                "handlers": ["console"],
                "level": "DEBUG" if debug else "INFO",
                "propagate": True,
            },
        },
    }

    # If the log dir exists the write our logs there.
    #
    if LOG_DIR.exists() and LOG_DIR.is_dir():
        DEFAULT_LOGGING_CONFIG["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "basic",
            "filename": str(LOG_DIR / "voxdrop.log"),
            "maxBytes": 20971520,
            "backupCount": 5,
        }
        DEFAULT_LOGGING_CONFIG["loggers"]["voxdrop"]["handlers"] = ["file"]

    # Add the audit file sections only if the audit dir exists.
    #
    warn_no_audit_dir = False
    if audit_dir:
        audit_dir = Path(audit_dir)
        if audit_dir.exists() and audit_dir.is_dir():
            DEFAULT_LOGGING_CONFIG["handlers"]["audit_file"] = {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "audit",
                "filename": str(audit_dir / "voxdrop-audit.log"),
                "maxBytes": 20971520,
                "backupCount": 5,
            }
            DEFAULT_LOGGING_CONFIG["loggers"]["voxdrop.audit"] = {
                "handlers": ["audit_file"],
                "level": "INFO",
                "propagate": False,
            }
        else:
            warn_no_audit_dir = True
    logging.config.dictConfig(DEFAULT_LOGGING_CONFIG)
    logger = logging.getLogger("voxdrop.utils")
    logger.info("Logging initialized")
    logger.debug("Debug enabled")
    if warn_no_audit_dir:
        logger.warning(
            "Unable to set up audit log because audit dir '%s' either does not exist or is not a directory.",
            audit_dir,
        )


####################################################################
#
def with_timeout(t: float):
    """
    A decorator that makes sure that the wrapped async function times out
    after the specified delay in seconds. Raises the TimeoutError
    exception.
    """

    def wrapper(corofunc):
        @functools.wraps(corofunc)
        async def run(*args, **kwargs):
            async with asyncio.timeout(t):
                return await corofunc(*args, **kwargs)

        return run

    return wrapper
