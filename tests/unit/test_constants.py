"""Unit tests for constants and error types."""

from routebench.constants import (
    BUCKET_KEY_SEPARATOR,
    DEFAULT_PROMPT_VERSIONS,
    FALLBACK_ENDPOINT_LABELS,
    NO_MATCH_ENDPOINT,
)
from routebench.errors import (
    ConfigurationError,
    DuplicateObservation,
    ObservationRejected,
    ProviderCallFailed,
    RouteBenchError,
)


class TestConstants:
    """Sanity checks on shared constants."""

    def test_no_match_label_is_a_fallback_label(self):
        """Test that the bucket label for no match is itself a fallback label."""
        assert NO_MATCH_ENDPOINT in FALLBACK_ENDPOINT_LABELS

    def test_fallback_labels_are_lowercase(self):
        """Test that labels are stored lowercase for case-insensitive lookup."""
        assert all(label == label.lower() for label in FALLBACK_ENDPOINT_LABELS)

    def test_separator_not_in_version_ids(self):
        """Test that the checkpoint separator cannot clash with version ids."""
        assert all(BUCKET_KEY_SEPARATOR not in v for v in DEFAULT_PROMPT_VERSIONS)


class TestErrors:
    """Tests for the exception hierarchy."""

    def test_hierarchy(self):
        """Test that every error derives from RouteBenchError."""
        assert issubclass(ConfigurationError, RouteBenchError)
        assert issubclass(ProviderCallFailed, RouteBenchError)
        assert issubclass(DuplicateObservation, ObservationRejected)

    def test_provider_call_failed_message(self):
        """Test the provider prefix and status code."""
        error = ProviderCallFailed("cohere", "HTTP 429: slow down", status_code=429)
        assert str(error) == "cohere: HTTP 429: slow down"
        assert error.provider == "cohere"
        assert error.status_code == 429

    def test_duplicate_observation(self):
        """Test the duplicate reason and key."""
        error = DuplicateObservation(("v1", "claude", 3))
        assert error.reason == "duplicate observation"
        assert error.key == ("v1", "claude", 3)
