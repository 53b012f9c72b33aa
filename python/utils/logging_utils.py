import logging
import os
import traceback
from typing import Optional

LOG_FORMAT = '%(asctime)s | [%(levelname)s] | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%dT%H:%M:%S%z'


def setup_logging(level: int = logging.INFO, fmt: Optional[str] = None, log_file: Optional[str] = None) -> None:
	"""Configure root logging once. Subsequent calls are no-ops.
	If fmt is not provided, the "<timestamp> | [LEVEL] | message" layout is used.
	When log_file is given, records are also appended to that file.
	"""
	root = logging.getLogger()
	if root.handlers:
		# Already configured; do nothing
		return
	format_str = fmt or LOG_FORMAT
	handlers = [logging.StreamHandler()]
	if log_file:
		log_dir = os.path.dirname(log_file)
		if log_dir:
			os.makedirs(log_dir, exist_ok=True)
		handlers.append(logging.FileHandler(log_file))
	logging.basicConfig(level=level, format=format_str, datefmt=LOG_DATE_FORMAT, handlers=handlers)


def parse_log_level(value: Optional[str], default: int = logging.INFO) -> int:
	"""Map a level name such as 'debug' or 'WARN' to a logging constant."""
	if not value:
		return default
	name = value.strip().upper()
	if name == "WARN":
		name = "WARNING"
	level = logging.getLevelName(name)
	return level if isinstance(level, int) else default


def get_logger(name: Optional[str] = None) -> logging.Logger:
	"""Return a module/logger by name."""
	return logging.getLogger(name) if name else logging.getLogger(__name__)


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
	"""Centralized exception logging with full traceback.

	Args:
		logger: Logger instance to use
		message: Custom error message to log before the traceback
		exc_info: Exception instance (if None, uses current exception context)
	"""
	logger.error(message)
	if exc_info is not None:
		logger.error(f"Exception type: {type(exc_info).__name__}")
		logger.error(f"Exception message: {str(exc_info)}")
	logger.error("Full traceback:")
	logger.error(traceback.format_exc())
