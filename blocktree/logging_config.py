from __future__ import annotations

"""Central logging configuration for the block tree core.

Import and call :func:`setup_logging` once when the editor shell starts.
"""

import copy
import logging
import logging.config
import os

from blocktree.config import ConfigManager

__all__ = ["setup_logging"]

# Loggers switched to DEBUG by BLOCKTREE_DEBUG_DRAG
DRAG_LOGGERS = (
    "blocktree.core.services.order_drop_service",
    "blocktree.core.services.geometry_service",
    "blocktree.core.services.drag_session",
)


def setup_logging() -> None:
    """Configure logging from the ``logging`` config section."""
    log_dir = os.environ.get("BLOCKTREE_LOG_DIR", "logs")
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, "blocktree.log")

    try:
        logging_config = copy.deepcopy(ConfigManager().get_logging_config())

        if logging_config and isinstance(logging_config, dict) and logging_config.get("version"):
            if "handlers" in logging_config and "file" in logging_config["handlers"]:
                logging_config["handlers"]["file"]["filename"] = log_file

            logging.config.dictConfig(logging_config)
            logging.info("===== Logging initialised from config files =====")
        else:
            _setup_minimal_logging()
    except (ValueError, TypeError, AttributeError, ImportError, OSError) as exc:
        # dictConfig reports every schema problem through these
        print(f"Error loading logging config: {exc}")
        _setup_minimal_logging()

    _apply_debug_overrides()


def _setup_minimal_logging() -> None:
    """Set up console-only logging when the config is unavailable."""
    minimal_config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'simple': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'simple',
                'level': 'INFO',
            },
        },
        'root': {
            'level': 'INFO',
            'handlers': ['console'],
        },
        # Keep an explicit entry so env overrides can flip it in minimal mode too
        'loggers': {
            'blocktree.core.services.mutation_service': {
                'handlers': ['console'],
                'level': 'INFO',
                'propagate': False,
            }
        }
    }

    logging.config.dictConfig(minimal_config)
    logging.error("===== Logging initialised with minimal fallback (config error) =====")


def _apply_debug_overrides() -> None:
    """Apply environment-driven module-specific debug overrides.

    Supports:
    - BLOCKTREE_DEBUG_DRAG=true  -> DEBUG for drop resolver, canvas and drag session
    - BLOCKTREE_DEBUG_MODULES=comma,separated,logger,names -> DEBUG for listed loggers
    """
    debug_drag = os.environ.get('BLOCKTREE_DEBUG_DRAG', '').strip().lower() in {'1', 'true', 'yes', 'on'}
    extra_modules = os.environ.get('BLOCKTREE_DEBUG_MODULES', '').strip()
    targets = []
    if debug_drag:
        targets.extend(DRAG_LOGGERS)
    if extra_modules:
        targets.extend([m.strip() for m in extra_modules.split(',') if m.strip()])

    for name in targets:
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)
        # Ensure at least one handler emits DEBUG for this logger
        has_debug_handler = any(h.level <= logging.DEBUG for h in logger.handlers)
        if not has_debug_handler:
            handler = logging.StreamHandler()
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
            logger.addHandler(handler)
        logger.info("Debug override active for logger '%s'", name)
