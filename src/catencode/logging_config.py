from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Mapping

# ----------------------------------------------------------------------
# Environment-driven defaults
# ----------------------------------------------------------------------

DEFAULT_LOG_LEVEL = (os.getenv("CATENCODE_LOG_LEVEL") or os.getenv("LOG_LEVEL", "INFO")).upper()
DEFAULT_LOG_DIR = Path(os.getenv("CATENCODE_LOG_DIR") or os.getenv("LOG_DIR", "logs"))

# Same variable config.AppConfig reads; 'prod' adds a log file.
APP_ENV = (os.getenv("CATENCODE_ENV") or os.getenv("ENV") or "dev").lower()

# CATENCODE_CONFIGURE_LOGGING=0 leaves logging to the host application.
AUTO_CONFIG = os.getenv("CATENCODE_CONFIGURE_LOGGING", "1").lower() not in {"0", "false", "no"}

# "text" or "json".
LOG_FORMAT = os.getenv("CATENCODE_LOG_FORMAT", "text").lower()

PACKAGE_LOGGER = "catencode"
LOG_FILENAME = "catencode.log"

# Sampler / tracking libraries that chat at INFO on every fit. They are held
# at WARNING unless the application itself runs at DEBUG.
LIBRARY_LOGGERS = ("pymc", "pytensor", "arviz", "mlflow")

_PRODUCTION_ENVS = {"prod", "production"}
_LOG_CONFIGURED = False


def _supports_json_logging() -> bool:
    try:
        import pythonjsonlogger  # type: ignore[unused-import]  # noqa: F401
    except ImportError:
        return False
    return True


def _formatters(fmt: str) -> dict[str, Any]:
    """Return a {"console": ..., "file": ...} pair of formatter configs."""
    if fmt == "json":
        json_class = "pythonjsonlogger.jsonlogger.JsonFormatter"
        return {
            "console": {
                "class": json_class,
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
            },
            "file": {
                "class": json_class,
                "format": "%(asctime)s %(levelname)s %(name)s %(filename)s %(lineno)d %(message)s",
            },
        }

    return {
        "console": {"format": "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s"},
        "file": {
            "format": "[%(asctime)s] [%(levelname)s] %(name)s (%(filename)s:%(lineno)d) - %(message)s"
        },
    }


def _handlers(env: str, log_dir: Path, level: str) -> dict[str, Any]:
    """Console handler always; a rotating file under `log_dir` only in production.

    Outside production no file handler is configured at all, so importing
    catencode never creates a log directory.
    """
    handlers: dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "console",
            "stream": "ext://sys.stdout",
        },
    }
    if env in _PRODUCTION_ENVS:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "file",
            "filename": str(log_dir / LOG_FILENAME),
            "maxBytes": 10 * 1024 * 1024,  # 10 MB
            "backupCount": 5,
            "encoding": "utf-8",
        }
    return handlers


def build_logging_config(
    *,
    env: str,
    log_dir: Path,
    level: str,
    fmt: str,
) -> dict[str, Any]:
    """Return the dictConfig mapping used by configure_logging().

    The `catencode` logger gets its own handlers and does not propagate, so
    records are emitted once even when the host application also configures
    the root logger.
    """
    handlers = _handlers(env, log_dir, level)
    active = list(handlers)
    library_level = "DEBUG" if level == "DEBUG" else "WARNING"

    loggers: dict[str, Any] = {
        PACKAGE_LOGGER: {"level": level, "handlers": list(active), "propagate": False},
    }
    for name in LIBRARY_LOGGERS:
        loggers[name] = {"level": library_level}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": _formatters(fmt),
        "handlers": handlers,
        "root": {"level": level, "handlers": list(active)},
        "loggers": loggers,
    }


def configure_logging(
    *,
    level: str | None = None,
    log_dir: Path | str | None = None,
    env: str | None = None,
    fmt: str | None = None,
    extra_config: Mapping[str, Any] | None = None,
    force: bool = False,
) -> None:
    """Configure process-wide logging for catencode.

    Parameters
    ----------
    level:
        "DEBUG", "INFO", "WARNING", ... Defaults to CATENCODE_LOG_LEVEL or "INFO".
    log_dir:
        Where the production log file goes. Defaults to CATENCODE_LOG_DIR or "logs".
    env:
        "dev", "prod", "test", ... Defaults to CATENCODE_ENV.
    fmt:
        "text" or "json" (needs python-json-logger). Defaults to CATENCODE_LOG_FORMAT.
    extra_config:
        dictConfig fragments merged one level deep into the generated config.
    force:
        Reconfigure even if logging was already set up.
    """
    global _LOG_CONFIGURED

    if _LOG_CONFIGURED and not force:
        return

    effective_fmt = (fmt or LOG_FORMAT).lower()
    json_unavailable = effective_fmt == "json" and not _supports_json_logging()
    if json_unavailable:
        effective_fmt = "text"

    config = build_logging_config(
        env=(env or APP_ENV).lower(),
        log_dir=Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR,
        level=(level or DEFAULT_LOG_LEVEL).upper(),
        fmt=effective_fmt,
    )

    for key, value in (extra_config or {}).items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value

    logging.config.dictConfig(config)
    _LOG_CONFIGURED = True

    if json_unavailable:
        logging.getLogger(PACKAGE_LOGGER).warning(
            "JSON logging requested but python-json-logger is not installed; using text format."
        )


def configure_logging_from_app_config(
    app_config: Any,
    *,
    fmt: str | None = None,
    extra_config: Mapping[str, Any] | None = None,
    force: bool = False,
) -> None:
    """Configure logging from an AppConfig (env, log_level, paths.base_dir/logs).

    Typed as `Any` so this module does not import catencode.config.
    """
    paths = getattr(app_config, "paths", None)
    base_dir = getattr(paths, "base_dir", None)
    log_dir = Path(base_dir) / "logs" if base_dir is not None else DEFAULT_LOG_DIR

    configure_logging(
        level=str(getattr(app_config, "log_level", "INFO")),
        log_dir=log_dir,
        env=str(getattr(app_config, "env", "dev")),
        fmt=fmt,
        extra_config=extra_config,
        force=force,
    )


def get_logger(name: str | None = None) -> logging.Logger:
    """Return `logging.getLogger(name)`, configuring logging on first use.

        logger = get_logger(__name__)
        logger.info("Fitted %s encoder for %s", method, column)
    """
    if not _LOG_CONFIGURED and AUTO_CONFIG:
        configure_logging()

    return logging.getLogger(name)
