"""Unit tests for cloud_deploy/error_utils.py"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from cloud_deploy.error_utils import (
    ActionableError,
    AuthenticationError,
    ConfigurationError,
    ErrorCategory,
    NotFoundError,
    OperationCancelledError,
    SecretValueTypeError,
    TransientNetworkError,
    classify_sdk_error,
    create_config_error,
    create_registry_auth_error,
    create_registry_connection_error,
    create_vault_connection_error,
    is_already_exists_error,
)


def _client_error(code, status=400):
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "CreateRepository",
    )


class TestActionableError:
    """Tests for ActionableError formatting and context wrapping"""

    def test_format_includes_suggestions_and_details(self):
        """Test that the rendered message lists suggestions and details"""
        error = ActionableError("boom", suggestions=["fix it"], details={"path": "secret/data/x"})
        text = str(error)
        assert "boom" in text
        assert "1. fix it" in text
        assert "path: secret/data/x" in text

    def test_subclasses_carry_fixed_category(self):
        """Test that each kind has its own category"""
        assert ConfigurationError("x").category is ErrorCategory.CONFIGURATION
        assert NotFoundError("x").category is ErrorCategory.NOT_FOUND
        assert OperationCancelledError("x").category is ErrorCategory.CANCELLED

    def test_secret_value_type_error_is_type_error(self):
        """Test that the secret type error can be caught as TypeError"""
        with pytest.raises(TypeError):
            raise SecretValueTypeError("not a string")

    def test_with_context_keeps_kind_and_merges_details(self):
        """Test that with_context prefixes the message and keeps the class"""
        original = NotFoundError("key url not found", details={"path": "p"})
        wrapped = original.with_context("failed to fetch secret db", name="db")

        assert isinstance(wrapped, NotFoundError)
        assert wrapped.message == "failed to fetch secret db: key url not found"
        assert wrapped.details == {"path": "p", "name": "db"}
        assert original.details == {"path": "p"}


class TestIsAlreadyExistsError:
    """Tests for is_already_exists_error"""

    def test_ecr_repository_already_exists(self):
        """Test that the ECR exception code is recognised"""
        assert is_already_exists_error(_client_error("RepositoryAlreadyExistsException"))

    def test_http_conflict_status(self):
        """Test that a 409 status is recognised"""
        error = Exception("conflict")
        error.status_code = 409
        assert is_already_exists_error(error)

    def test_message_text(self):
        """Test that an 'already exists' message is recognised"""
        assert is_already_exists_error(RuntimeError("Repository myrepo already exists"))

    def test_other_errors(self):
        """Test that unrelated errors are not treated as already-exists"""
        assert not is_already_exists_error(RuntimeError("quota exceeded"))
        assert not is_already_exists_error(_client_error("LimitExceededException"))


class TestClassifySdkError:
    """Tests for classify_sdk_error"""

    def test_access_denied_is_authentication_error(self):
        """Test that AccessDenied maps to AuthenticationError"""
        result = classify_sdk_error("create ECR repository", _client_error("AccessDeniedException", 400), region="us-east-1")
        assert isinstance(result, AuthenticationError)
        assert result.details["region"] == "us-east-1"

    def test_http_404_is_not_found(self):
        """Test that a 404 response maps to NotFoundError"""
        error = Exception("missing")
        error.resp = MagicMock(status=404)
        assert isinstance(classify_sdk_error("get repository", error), NotFoundError)

    def test_unknown_error_is_transient(self):
        """Test that anything else maps to TransientNetworkError"""
        result = classify_sdk_error("get repository", ConnectionError("connection reset"))
        assert isinstance(result, TransientNetworkError)
        assert "get repository failed" in result.message

    def test_actionable_error_keeps_kind(self):
        """Test that already-classified errors are wrapped, not reclassified"""
        result = classify_sdk_error("authentication with registry r2", OperationCancelledError("cancelled"))
        assert isinstance(result, OperationCancelledError)
        assert result.message.startswith("authentication with registry r2 failed")


class TestErrorFactories:
    """Tests for the error factory functions"""

    def test_registry_auth_error_ecr_suggestions(self):
        """Test that ECR URLs get ECR-specific suggestions"""
        error = create_registry_auth_error("123456789012.dkr.ecr.us-east-1.amazonaws.com", RuntimeError("denied"))
        assert isinstance(error, AuthenticationError)
        assert any("ecr" in s.lower() for s in error.suggestions)

    def test_registry_connection_error_timeout_suggestions(self):
        """Test that timeouts suggest raising distribution.timeout"""
        error = create_registry_connection_error("myacr.azurecr.io", RuntimeError("operation timed out"))
        assert isinstance(error, TransientNetworkError)
        assert any("distribution.timeout" in s for s in error.suggestions)

    def test_vault_connection_error(self):
        """Test that Vault connection errors name the address"""
        error = create_vault_connection_error("http://vault:8200", "approle login", ConnectionError("refused"))
        assert "http://vault:8200" in error.message
        assert error.details["error_type"] == "ConnectionError"

    def test_config_error_lists_valid_sources(self):
        """Test that source errors list the valid sources"""
        error = create_config_error("credentials.source", "bogus", "unknown credentials source")
        assert isinstance(error, ConfigurationError)
        assert any("secrets-store" in s for s in error.suggestions)
