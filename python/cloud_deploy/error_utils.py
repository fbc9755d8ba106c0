"""
Error message utilities for providing actionable guidance to users.

This module defines the error taxonomy shared by credential resolution, the
Vault session and image distribution, plus factory functions that attach
suggested fixes and troubleshooting steps.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONFIGURATION = "configuration"
    CREDENTIALS = "credentials"
    AUTHENTICATION = "authentication"
    BACKEND = "backend"
    NOT_FOUND = "not_found"
    TYPE = "type"
    UNSUPPORTED = "unsupported"
    NETWORK = "network"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    category = ErrorCategory.UNKNOWN

    def __init__(self, message: str, category: Optional[ErrorCategory] = None,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification (defaults to the class category)
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        if category is not None:
            self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [f"❌ {self.message}"]

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\n📋 Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)

    def with_context(self, context: str, **details: Any) -> "ActionableError":
        """Return an error of the same kind with a context prefix and extra details.

        The original error should be chained with ``raise ... from``.
        """
        merged = dict(self.details)
        merged.update(details)
        return self.__class__(
            f"{context}: {self.message}",
            category=self.category,
            suggestions=list(self.suggestions),
            details=merged,
        )


class ConfigurationError(ActionableError):
    """Missing or invalid setup; never retryable."""

    category = ErrorCategory.CONFIGURATION


class MissingCredentialsError(ActionableError):
    """A required credential value is absent from the selected source."""

    category = ErrorCategory.CREDENTIALS


class BackendError(ActionableError):
    """A secret backend could not be read or returned an unparseable payload."""

    category = ErrorCategory.BACKEND


class AuthenticationError(ActionableError):
    category = ErrorCategory.AUTHENTICATION


class NotFoundError(ActionableError):
    category = ErrorCategory.NOT_FOUND


class SecretValueTypeError(ActionableError, TypeError):
    category = ErrorCategory.TYPE


class UnsupportedError(ActionableError):
    """Raised for auth methods and backends that exist only as extension points."""

    category = ErrorCategory.UNSUPPORTED


class TransientNetworkError(ActionableError):
    """Arbitrary SDK or network failure. Not retried here; callers may retry the whole operation."""

    category = ErrorCategory.NETWORK


class OperationCancelledError(ActionableError):
    category = ErrorCategory.CANCELLED


_AUTH_INDICATORS = [
    "401",
    "403",
    "unauthorized",
    "forbidden",
    "access denied",
    "accessdenied",
    "denied",
    "invalid token",
    "permission",
]

_NOT_FOUND_INDICATORS = [
    "404",
    "not found",
    "notfound",
    "does not exist",
    "manifest unknown",
    "name unknown",
]

_ALREADY_EXISTS_INDICATORS = [
    "already exists",
    "alreadyexists",
    "resourceexists",
]


def _status_code(error: Exception) -> Optional[int]:
    """Best-effort HTTP status from boto3, azure-core, googleapiclient and hvac errors"""
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    resp = getattr(error, "resp", None)
    if resp is not None and isinstance(getattr(resp, "status", None), int):
        return resp.status
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if isinstance(status, int):
            return status
    return None


def _error_text(error: Exception) -> str:
    parts = [type(error).__name__, str(error)]
    stderr = getattr(error, "stderr", None)
    if stderr:
        parts.append(str(stderr))
    code = getattr(error, "error_code", None)
    if code:
        parts.append(str(code))
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        parts.append(str(response.get("Error", {}).get("Code", "")))
    return " ".join(parts).lower()


def is_already_exists_error(error: Exception) -> bool:
    """Check whether a creation error means the resource is already there"""
    if _status_code(error) == 409:
        return True
    text = _error_text(error)
    return any(indicator in text for indicator in _ALREADY_EXISTS_INDICATORS)


def classify_sdk_error(operation: str, error: Exception, **details: Any) -> ActionableError:
    """Map an arbitrary SDK or network exception onto the error taxonomy

    Args:
        operation: Human-readable operation name (e.g. "create ECR repository")
        error: The exception raised by the SDK
        **details: Identifying context (provider, registry URL, path, ...)

    Returns:
        AuthenticationError, NotFoundError or TransientNetworkError
    """
    if isinstance(error, ActionableError):
        return error.with_context(f"{operation} failed", **details)

    text = _error_text(error)
    status = _status_code(error)
    merged = {"error_type": type(error).__name__, "error_message": str(error)}
    merged.update(details)

    if status in (401, 403) or any(indicator in text for indicator in _AUTH_INDICATORS):
        return AuthenticationError(
            f"{operation} was rejected: {error}",
            suggestions=[
                "Verify the credentials used for this provider are current",
                "Check the IAM/RBAC permissions granted to these credentials",
            ],
            details=merged,
        )

    if status == 404 or any(indicator in text for indicator in _NOT_FOUND_INDICATORS):
        return NotFoundError(f"{operation} failed: resource not found ({error})", details=merged)

    return TransientNetworkError(
        f"{operation} failed: {error}",
        suggestions=["Check network connectivity to the provider API", "Retry the whole operation"],
        details=merged,
    )


def create_registry_connection_error(registry_url: str, error: Exception) -> TransientNetworkError:
    """Create actionable error for registry connection failures"""
    error_str = str(error).lower()

    suggestions = [
        f"Verify the registry URL is correct: {registry_url}",
        "Check network connectivity to the registry",
        "Verify firewall rules allow access to the registry",
    ]

    if "timeout" in error_str or "timed out" in error_str:
        suggestions.insert(1, "Check if the registry is experiencing high load")
        suggestions.insert(2, "Increase distribution.timeout in config.yaml")

    if "name resolution" in error_str or "dns" in error_str or "no such host" in error_str:
        suggestions.insert(1, "Verify DNS resolution for the registry hostname")

    return TransientNetworkError(
        f"Failed to connect to container registry at {registry_url}",
        suggestions=suggestions,
        details={
            "registry_url": registry_url,
            "error_type": type(error).__name__,
            "error_message": str(error),
        },
    )


def create_registry_auth_error(registry_url: str, error: Exception) -> AuthenticationError:
    """Create actionable error for registry authentication failures"""
    suggestions = [
        "Verify the credentials resolved for this provider are current",
        "Check that the credentials are allowed to push to the repository",
    ]

    if "amazonaws.com" in registry_url:
        suggestions.insert(0, "Run 'aws ecr get-login-password' to test ECR authentication")
        suggestions.insert(1, "Check AWS IAM permissions for ecr:GetAuthorizationToken and ecr:*Layer*")
    elif "azurecr.io" in registry_url:
        suggestions.insert(0, "Verify the admin user is enabled on the ACR registry")
    elif "pkg.dev" in registry_url:
        suggestions.insert(0, "Verify the service account has roles/artifactregistry.writer")

    return AuthenticationError(
        f"Failed to authenticate with container registry at {registry_url}",
        suggestions=suggestions,
        details={
            "registry_url": registry_url,
            "error_type": type(error).__name__,
            "error_message": str(error),
        },
    )


def create_vault_connection_error(address: str, operation: str, error: Exception) -> TransientNetworkError:
    """Create actionable error for Vault connectivity failures"""
    suggestions = [
        f"Verify Vault is reachable at {address}",
        "Check VAULT_ADDR and vault.address in config.yaml",
        "If Vault uses a self-signed certificate, set vault.tls_skip_verify (not for production)",
    ]

    if "timeout" in str(error).lower():
        suggestions.insert(1, "Increase vault.timeout in config.yaml")

    return TransientNetworkError(
        f"Vault {operation} failed: could not reach {address}",
        suggestions=suggestions,
        details={
            "address": address,
            "error_type": type(error).__name__,
            "error_message": str(error),
        },
    )


def create_config_error(field: str, value: Any, reason: str) -> ConfigurationError:
    """Create actionable error for configuration validation failures"""
    suggestions = [
        f"Check the '{field}' value in config.yaml",
        "Verify the value matches the expected format",
        "Check config-example.yaml for the correct format",
    ]

    if "source" in field.lower():
        suggestions.insert(1, "Valid sources: environment, secrets-store, vault, encrypted-file")
    elif "method" in field.lower():
        suggestions.insert(1, "Valid methods: token, approle, aws-iam, gcp-iam")
    elif "timeout" in field.lower():
        suggestions.insert(1, "Time values must be positive numbers")

    return ConfigurationError(
        f"Configuration error: Invalid value for '{field}'",
        suggestions=suggestions,
        details={
            "field": field,
            "value": value,
            "reason": reason,
        },
    )
