"""
Centralized logging setup and configuration.

All modules log through one ``StructuredLogger``. Per-file detail goes to
DEBUG, per-artifact failures to WARNING, and every server unit ends with a
verdict line tagged ``[OK]``, ``[NG]`` or ``[INSUFFICIENT]``.
"""

import logging
import re
import sys
from typing import Optional, TextIO


VERDICT_TAG_RE = re.compile(r"^\[(OK|NG|INSUFFICIENT)\]")


class ColoredFormatter(logging.Formatter):
    """
    Formatter that colors level names and verdict tags.

    Colors are only applied when the target stream is a terminal.
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    TAG_COLORS = {
        "OK": "\033[1;32m",
        "NG": "\033[1;31m",
        "INSUFFICIENT": "\033[1;33m",
    }

    def __init__(self, fmt: Optional[str] = None, use_colors: bool = True, stream: Optional[TextIO] = None):
        """
        Initialize the formatter.

        Args:
            fmt: Log message format string
            use_colors: Whether to use colors in output
            stream: Stream the handler writes to (default: stdout)
        """
        super().__init__(fmt or "%(asctime)s [%(levelname)s] %(message)s")
        stream = stream or sys.stdout
        self.use_colors = use_colors and hasattr(stream, "isatty") and stream.isatty()

    def _color_tag(self, message: str) -> str:
        match = VERDICT_TAG_RE.match(message)
        if not match:
            return message
        color = self.TAG_COLORS[match.group(1)]
        return f"{color}{match.group(0)}{self.COLORS['RESET']}{message[match.end():]}"

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors:
            return super().format(record)

        original_levelname = record.levelname
        original_msg = record.msg
        reset = self.COLORS["RESET"]

        record.levelname = f"{self.COLORS.get(original_levelname, '')}{original_levelname}{reset}"
        if isinstance(record.msg, str):
            record.msg = self._color_tag(record.msg)

        try:
            return super().format(record)
        finally:
            record.levelname = original_levelname
            record.msg = original_msg


class StructuredLogger(logging.Logger):
    """
    Logger with helpers for sectioned audit output.
    """

    def section(self, title: str) -> None:
        """
        Log a section header.

        Args:
            title: Section title
        """
        self.info("")
        self.info("=" * 60)
        self.info(title)
        self.info("=" * 60)

    def subsection(self, title: str) -> None:
        """
        Log a subsection header.

        Args:
            title: Subsection title
        """
        self.info("")
        self.info(f"--- {title} ---")

    def success(self, message: str) -> None:
        self.info(f"[OK] {message}")

    def failure(self, message: str) -> None:
        self.error(f"[NG] {message}")

    def verdict(self, label: str, status: str) -> None:
        """
        Log the final verdict line for one server unit.

        NG verdicts are logged at ERROR, insufficient data at WARNING.

        Args:
            label: "<org>/<server>" label
            status: "OK", "NG" or "INSUFFICIENT"
        """
        line = f"[{status}] {label}"
        if status == "NG":
            self.error(line)
        elif status == "OK":
            self.info(line)
        else:
            self.warning(line)


# Global logger instance
_logger: Optional[StructuredLogger] = None


def setup_logger(
    name: str = "CertAudit",
    verbose: bool = False,
    use_colors: bool = True,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> StructuredLogger:
    """
    Setup and configure the global logger.

    Calling it again replaces the previous handlers.

    Args:
        name: Logger name
        verbose: Enable debug-level logging
        use_colors: Enable colored output
        log_file: Optional file path for log output
        stream: Console stream (default: stdout)

    Returns:
        Configured StructuredLogger instance
    """
    global _logger

    logging.setLoggerClass(StructuredLogger)
    logger = logging.getLogger(name)
    logger.__class__ = StructuredLogger

    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()

    console_stream = stream or sys.stdout
    console_handler = logging.StreamHandler(console_stream)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors, stream=console_stream))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        ))
        logger.addHandler(file_handler)

    _logger = logger
    return logger


def get_logger() -> StructuredLogger:
    """
    Get the global logger instance, creating a default one if needed.

    Returns:
        The configured StructuredLogger instance
    """
    global _logger

    if _logger is None:
        _logger = setup_logger()

    return _logger
