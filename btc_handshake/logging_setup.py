"""
btc-handshake - Logging System
================================
Logging strutturato (JSON o testo colorato) per handshake e fan-out.

Last Updated: 2026-10-19
Version: 1.0.0

Features:
- Logging JSON strutturato
- Rotation automatica
- Console colorata
- Context enrichment (extra_data)
- Performance tracking
"""

import logging
import logging.handlers
import json
import sys
import time
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime, timezone


ROOT_LOGGER_NAME = "btc_handshake"


# ============================================================================
# JSON FORMATTER
# ============================================================================

class JSONFormatter(logging.Formatter):
    """
    Un oggetto JSON per riga.

    Il peer (se presente nel context) viene portato al primo livello,
    così i log di un fan-out si filtrano per endpoint:

    {"ts": "2026-10-19T10:00:00.000000Z", "level": "INFO",
     "logger": "btc_handshake.network.handshake", "peer": "1.2.3.4:8333",
     "msg": "Handshake complete", "data": {...}, "error": {...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        data = dict(getattr(record, "extra_data", None) or {})

        entry = {
            "ts": _utc_timestamp(record.created).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
        }
        if "peer" in data:
            entry["peer"] = data.pop("peer")
        entry["msg"] = record.getMessage()
        if data:
            entry["data"] = data

        if record.exc_info:
            exc_type, exc, _ = record.exc_info
            entry["error"] = {
                "type": exc_type.__name__,
                "detail": str(exc),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str)


# ============================================================================
# TEXT FORMATTER (Human-Readable)
# ============================================================================

class ColoredTextFormatter(logging.Formatter):
    """Riga leggibile: ora UTC, livello (colorato su terminale), logger, peer"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[90m",
        logging.INFO: "\033[92m",
        logging.WARNING: "\033[93m",
        logging.ERROR: "\033[91m",
        logging.CRITICAL: "\033[1;91m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<7}"
        color = self.LEVEL_COLORS.get(record.levelno)
        if self.use_colors and color:
            level = f"{color}{level}{self.RESET}"

        data = dict(getattr(record, "extra_data", None) or {})
        peer = data.pop("peer", None)

        line = f"{_utc_timestamp(record.created):%H:%M:%S} {level} {record.name.removeprefix(ROOT_LOGGER_NAME + '.')}"
        if peer:
            line += f" [{peer}]"
        line += f" {record.getMessage()}"

        if data:
            line += " " + " ".join(f"{key}={value}" for key, value in data.items())

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


def _utc_timestamp(created: float) -> datetime:
    return datetime.fromtimestamp(created, tz=timezone.utc)


# ============================================================================
# LOGGER CLASS
# ============================================================================

class HandshakeLogger:
    """
    Wrapper logger con context enrichment.

    Ogni chiamata accetta un dict `extra_data` che viene unito al
    context globale e allegato al LogRecord.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger
        self._context: Dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._logger.name

    def set_context(self, **kwargs):
        """
        Imposta context globale (aggiunto a tutti i log).

        Example:
            >>> logger.set_context(network="mainnet")
        """
        self._context.update(kwargs)

    def clear_context(self):
        self._context.clear()

    def bind(self, **kwargs) -> "HandshakeLogger":
        """Nuovo logger con context esteso (es. per singolo peer)"""
        child = HandshakeLogger(self._logger)
        child._context = {**self._context, **kwargs}
        return child

    def _log(
        self,
        level: int,
        message: str,
        extra_data: Optional[Dict[str, Any]] = None,
        exc_info=None
    ):
        merged_extra = {**self._context}
        if extra_data:
            merged_extra.update(extra_data)

        self._logger.log(
            level,
            message,
            exc_info=exc_info,
            extra={'extra_data': merged_extra} if merged_extra else {}
        )

    def debug(self, message: str, extra_data: Optional[Dict] = None):
        self._log(logging.DEBUG, message, extra_data)

    def info(self, message: str, extra_data: Optional[Dict] = None):
        self._log(logging.INFO, message, extra_data)

    def warning(self, message: str, extra_data: Optional[Dict] = None):
        self._log(logging.WARNING, message, extra_data)

    def error(self, message: str, extra_data: Optional[Dict] = None, exc_info=None):
        self._log(logging.ERROR, message, extra_data, exc_info)

    def critical(self, message: str, extra_data: Optional[Dict] = None, exc_info=None):
        self._log(logging.CRITICAL, message, extra_data, exc_info)

    def exception(self, message: str, extra_data: Optional[Dict] = None):
        """Log exception con traceback"""
        self._log(logging.ERROR, message, extra_data, exc_info=sys.exc_info())


# ============================================================================
# SETUP FUNCTION
# ============================================================================

def setup_logging(
    log_level: str = "INFO",
    log_to_file: bool = False,
    log_dir: Path = Path("./logs"),
    log_format: str = "text",
    log_rotation_mb: int = 10,
    log_retention_days: int = 7,
    enable_console: bool = True,
) -> HandshakeLogger:
    """
    Setup logging system.

    Args:
        log_level: Level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Salva su file
        log_dir: Directory log files
        log_format: Formato (json, text)
        log_rotation_mb: MB prima rotation
        log_retention_days: Numero file di backup
        enable_console: Log anche su console (stderr)

    Returns:
        HandshakeLogger: Logger root configurato

    Example:
        >>> logger = setup_logging(log_level="DEBUG", log_format="json")
        >>> logger.info("Fan-out started", extra_data={"peers": 8})
    """
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.propagate = False

    root_logger.handlers.clear()

    if log_to_file:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / "btc_handshake.log",
            maxBytes=log_rotation_mb * 1024 * 1024,
            backupCount=log_retention_days,
            encoding='utf-8'
        )

        if log_format == "json":
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(ColoredTextFormatter(use_colors=False))

        root_logger.addHandler(file_handler)

    if enable_console:
        # stdout resta libero per l'output della CLI
        console_handler = logging.StreamHandler(sys.stderr)

        if log_format == "json":
            console_handler.setFormatter(JSONFormatter())
        else:
            console_handler.setFormatter(ColoredTextFormatter())

        root_logger.addHandler(console_handler)

    return HandshakeLogger(root_logger)


# ============================================================================
# CATEGORY LOGGERS
# ============================================================================

def get_logger(category: str) -> HandshakeLogger:
    """
    Ottieni logger per categoria specifica.

    Example:
        >>> logger = get_logger("network.handshake")
        >>> logger.info("Handshake started")
    """
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{category}")
    return HandshakeLogger(logger)


# ============================================================================
# PERFORMANCE TRACKING
# ============================================================================

class PerformanceLogger:
    """
    Context manager per tracking performance.

    Example:
        >>> logger = get_logger("network.fanout")
        >>> with PerformanceLogger(logger, "fanout") as perf:
        ...     ...
        >>> perf.elapsed_ms
    """

    def __init__(
        self,
        logger: HandshakeLogger,
        operation: str,
        threshold_ms: Optional[int] = None
    ):
        self.logger = logger
        self.operation = operation
        self.threshold_ms = threshold_ms
        self.start_time: Optional[float] = None
        self.elapsed_ms: float = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000

        extra = {
            "operation": self.operation,
            "duration_ms": round(self.elapsed_ms, 2)
        }

        if self.threshold_ms and self.elapsed_ms > self.threshold_ms:
            self.logger.warning(
                f"{self.operation} took {self.elapsed_ms:.2f}ms (threshold: {self.threshold_ms}ms)",
                extra_data=extra
            )
        else:
            self.logger.debug(
                f"{self.operation} completed in {self.elapsed_ms:.2f}ms",
                extra_data=extra
            )


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "setup_logging",
    "get_logger",
    "HandshakeLogger",
    "PerformanceLogger",
    "JSONFormatter",
    "ColoredTextFormatter",
    "ROOT_LOGGER_NAME",
]
