from datetime import UTC, datetime

from conduit.common.utils import REDACTED, ensure_utc, sanitize_for_storage


class TestSanitizeForStorage:
    """Test credential redaction before payloads are persisted"""

    def test_redacts_nested_credentials(self):
        """Test that credential keys are redacted at any depth, including inside lists"""
        data = {
            "url": "https://hooks.example.test/inbound",
            "headers": {"Authorization": "Bearer abc", "X-Api-Key": "k-1", "Accept": "*/*"},
            "payload": {
                "users": [{"name": "Ada", "password": "hunter2"}],
                "client_secret": "s3cret",
            },
        }

        assert sanitize_for_storage(data) == {
            "url": "https://hooks.example.test/inbound",
            "headers": {"Authorization": REDACTED, "X-Api-Key": REDACTED, "Accept": "*/*"},
            "payload": {
                "users": [{"name": "Ada", "password": REDACTED}],
                "client_secret": REDACTED,
            },
        }

    def test_does_not_mutate_input(self):
        """Test that the original document keeps its values"""
        data = {"token": "abc"}

        sanitize_for_storage(data)

        assert data == {"token": "abc"}

    def test_scalars_pass_through(self):
        assert sanitize_for_storage("plain text") == "plain text"
        assert sanitize_for_storage(None) is None
        assert sanitize_for_storage({"tokens_used": 3}) == {"tokens_used": 3}


def test_ensure_utc_attaches_utc_to_naive_datetimes():
    naive = datetime(2026, 10, 19, 10, 0)

    assert ensure_utc(naive) == naive.replace(tzinfo=UTC)
    assert ensure_utc(None) is None
