"""Unit tests for Kubernetes exceptions."""

from __future__ import annotations

import pytest

from pipeline_controller.integrations.kubernetes.exceptions import (
    ConcurrentUpdateConflict,
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
)


@pytest.mark.unit
@pytest.mark.kubernetes
class TestKubernetesError:
    """Test KubernetesError base exception."""

    def test_init_minimal(self) -> None:
        """Test initialization with minimal arguments."""
        error = KubernetesError("Something went wrong")
        assert error.message == "Something went wrong"
        assert error.status_code is None
        assert error.resource_type is None
        assert str(error) == "Something went wrong"

    def test_init_with_resource_info(self) -> None:
        """Test initialization with resource information."""
        error = KubernetesError(
            "Failed",
            status_code=500,
            resource_type="pipelines",
            resource_name="podinfo",
            namespace="flux-system",
        )
        assert error.status_code == 500
        assert error.resource_name == "podinfo"
        assert error.namespace == "flux-system"


@pytest.mark.unit
@pytest.mark.kubernetes
class TestSubclasses:
    """Test the specialised exceptions."""

    def test_not_found_message_follows_api_wording(self) -> None:
        """Not-found errors read like the API server's."""
        error = KubernetesNotFoundError(resource_type="secrets", resource_name="creds")
        assert str(error) == 'secrets "creds" not found'
        assert error.status_code == 404

    def test_not_found_empty_name(self) -> None:
        """An empty name still produces the API-style message."""
        error = KubernetesNotFoundError(
            resource_type="HelmRelease.helm.toolkit.fluxcd.io", resource_name=""
        )
        assert str(error) == 'HelmRelease.helm.toolkit.fluxcd.io "" not found'

    def test_not_found_default(self) -> None:
        """Without resource info the default message is used."""
        assert str(KubernetesNotFoundError()) == "Kubernetes resource not found"

    def test_conflict_message(self) -> None:
        """Conflicts name the modified object."""
        error = KubernetesConflictError(
            resource_type="Pipeline.pipelines.weave.works", resource_name="podinfo"
        )
        assert "has been modified" in str(error)
        assert error.status_code == 409
        assert ConcurrentUpdateConflict is KubernetesConflictError

    def test_connection_error_keeps_original(self) -> None:
        """Connection errors carry the underlying exception."""
        cause = OSError("refused")
        error = KubernetesConnectionError(original_error=cause)
        assert error.original_error is cause
        assert isinstance(error, KubernetesError)

    def test_timeout_includes_duration(self) -> None:
        """Timeouts mention how long was waited."""
        error = KubernetesTimeoutError(timeout_seconds=5)
        assert str(error) == "Kubernetes operation timed out (after 5s)"

    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (KubernetesAuthError(), 401),
            (KubernetesValidationError(), 422),
        ],
    )
    def test_default_status_codes(self, error: KubernetesError, status: int) -> None:
        """Subclasses default their HTTP status."""
        assert error.status_code == status
