import logging
import os
import re
import traceback
from typing import Any, Mapping, Optional

_SENSITIVE_PATTERNS = [
	re.compile(r"(?i)(?<![A-Za-z0-9/.@-])(password|secret|token|api[_-]?key|key|auth)(\s*[:=]\s*)[^\s,;]+"),
	re.compile(r"(?i)Bearer\s+[A-Za-z0-9\-._~+/]+=*"),
	re.compile(r"(?i)Basic\s+[A-Za-z0-9+/]+=*"),
	re.compile(r"AKIA[0-9A-Z]{16}"),
]

_SENSITIVE_KEYS = (
	"password",
	"secret",
	"token",
	"key",
	"auth",
	"credential",
)


def _redact(match: "re.Match") -> str:
	if match.lastindex and match.lastindex >= 2:
		return f"{match.group(1)}{match.group(2)}[REDACTED]"
	return "[REDACTED]"


def sanitize_string(value: str) -> str:
	"""Mask credentials, bearer/basic headers and AWS access key ids in a string."""
	sanitized = value
	for pattern in _SENSITIVE_PATTERNS:
		sanitized = pattern.sub(_redact, sanitized)
	return sanitized


def is_sensitive_key(key: str) -> bool:
	lowered = key.lower()
	return any(marker in lowered for marker in _SENSITIVE_KEYS)


def sanitize_mapping(values: Mapping[str, Any]) -> dict:
	"""Return a copy of a mapping with sensitive keys redacted, recursing into nested mappings."""
	sanitized = {}
	for key, value in values.items():
		if isinstance(value, Mapping):
			sanitized[key] = sanitize_mapping(value)
		elif is_sensitive_key(str(key)) and value not in (None, ""):
			sanitized[key] = "[REDACTED]"
		elif isinstance(value, str):
			sanitized[key] = sanitize_string(value)
		else:
			sanitized[key] = value
	return sanitized


class SensitiveDataFilter(logging.Filter):
	"""Logging filter that sanitizes the rendered message of every record."""

	def filter(self, record: logging.LogRecord) -> bool:
		try:
			message = record.getMessage()
		except Exception:
			return True
		record.msg = sanitize_string(message)
		record.args = None
		return True


def setup_logging(level: Optional[int] = None, fmt: Optional[str] = None) -> None:
	"""Configure root logging once. Subsequent calls are no-ops.
	If fmt is not provided, a sensible default is used.
	CLOUD_DEPLOY_DEBUG=true forces DEBUG level.
	"""
	root = logging.getLogger()
	if root.handlers:
		# Already configured; do nothing
		return
	if level is None:
		level = logging.DEBUG if os.environ.get("CLOUD_DEPLOY_DEBUG", "").lower() == "true" else logging.INFO
	format_str = fmt or '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
	logging.basicConfig(level=level, format=format_str)
	for handler in root.handlers:
		handler.addFilter(SensitiveDataFilter())


def get_logger(name: Optional[str] = None) -> logging.Logger:
	"""Return a module/logger by name, after ensuring logging is configured."""
	setup_logging()
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
		logger.error(f"Exception message: {sanitize_string(str(exc_info))}")
	logger.error("Full traceback:")
	logger.error(sanitize_string(traceback.format_exc()))
