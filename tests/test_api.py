"""
Tests for the usage endpoint contracts.

Exercises POST, GET and DELETE handlers end to end against a temporary
SQLite store.
"""

import json
import os
import tempfile
from unittest.mock import patch

from usage_reconciler.api.handlers import (
    CLEARED_MESSAGE,
    EMERGENCY_MESSAGE,
    ERROR_FALLBACK_MESSAGE,
    NO_DATA_MESSAGE,
    STORED_MESSAGE,
    SYNTHETIC_MESSAGE,
    build_api,
)
from usage_reconciler.config.loader import ServiceConfig, StorageConfig
from usage_reconciler.core.errors import StoreUnavailable

NOW = 1_700_000_000_000


class TestUsageAPI:
    """Test the usage API handlers."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        config = ServiceConfig(storage=StorageConfig(db_path=os.path.join(self.temp_dir, "test.db")))
        self.recorded = []
        self.api = build_api(config, clock=lambda: NOW, on_usage_recorded=self.recorded.append)
        self.api.repository.initialize_schema()

    def teardown_method(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _post(self, body, headers=None):
        return self.api.post_usage(json.dumps(body), headers or {})

    # POST

    def test_post_shape_a_end_to_end(self):
        """Ingest then query with the prefixed form finds the alias row directly."""
        response = self._post({"modelName": "Stable Diffusion", "imageCount": 3, "userId": "abc"})
        assert response.status == 200
        assert response.body["success"] is True
        assert response.body["message"] == STORED_MESSAGE
        assert response.body["data"]["userId"] == "abc"
        assert response.body["data"]["timestamp"] == NOW
        assert self.api.repository.count() == 2

        result = self.api.get_usage({"userId": "user_abc"})
        assert [r["userId"] for r in result.body["data"]] == ["user_abc"]
        assert result.body["usedFallbackSynthesis"] is False

    def test_post_shape_b_with_header_identifier(self):
        response = self._post({"model": "DALL-E", "count": 2}, {"x-email": "j@x.io"})
        assert response.body["data"]["modelName"] == "DALL-E"
        assert response.body["data"]["userId"] == "j@x.io"

    def test_post_bearer_identifier(self):
        response = self._post({"model": "DALL-E", "count": 2}, {"Authorization": "Bearer tok123"})
        assert response.body["data"]["userId"] == "tok123"

    def test_post_unknown_user(self):
        response = self._post({"model": "DALL-E", "count": 2})
        assert response.body["data"]["userId"] == "unknown_user"

    def test_post_invalid_json(self):
        response = self.api.post_usage("{oops", {})
        assert response.status == 400
        assert response.body == {"success": False, "error": "Invalid JSON in request body"}

    def test_post_unknown_shape_echoes_keys(self):
        response = self._post({"foo": 1, "bar": "secret"})
        assert response.status == 400
        assert response.body["receivedFormat"] == ["bar", "foo"]
        assert "Unknown data format" in response.body["error"]

    def test_post_invalid_model_name(self):
        response = self._post({"modelName": "", "imageCount": 1})
        assert response.status == 400
        assert response.body["error"] == "Invalid model name"

    def test_post_invalid_image_count_writes_nothing(self):
        response = self._post({"modelName": "A", "imageCount": -1, "userId": "abc"})
        assert response.status == 400
        assert response.body["error"] == "Invalid image count"
        assert self.api.repository.count() == 0
        assert self.recorded == []

    def test_post_batch_partial_failure(self):
        response = self._post([
            {"modelName": "A", "imageCount": 1, "userId": "abc"},
            {"modelName": "B", "imageCount": 0, "userId": "abc"},
            {"model": "C", "count": 2, "user_id": "abc"},
        ])
        assert response.status == 200
        assert response.body["success"] is False
        data = response.body["data"]
        assert [item["success"] for item in data] == [True, False, True]
        assert data[1]["error"] == "Invalid image count"
        assert self.api.repository.count() == 4

    def test_post_batch_unrecognized_item(self):
        response = self._post([{"model": "A", "count": 1}, {"what": 1}])
        assert response.body["data"][1]["reason"] == "UnrecognizedPayloadShape"

    def test_post_store_failure_is_500(self):
        with patch.object(self.api.repository, "insert", side_effect=StoreUnavailable("disk full")):
            response = self._post({"model": "A", "count": 1})
        assert response.status == 500
        assert response.body["success"] is False
        assert response.body["error"] == "Failed to store data: disk full"

    def test_refresh_callback(self):
        self._post({"model": "A", "count": 1, "userId": "abc"})
        self._post([{"model": "A", "count": 1, "userId": "b"}, {"model": "A", "count": 1, "userId": "a"}])
        assert self.recorded == [["abc"], ["a", "b"]]

    def test_failing_callback_does_not_fail_the_write(self):
        def broken(identifiers):
            raise RuntimeError("cache offline")

        self.api.on_usage_recorded = broken
        response = self._post({"model": "A", "count": 1, "userId": "abc"})
        assert response.status == 200
        assert response.body["success"] is True
        assert self.api.repository.count() == 2

    def test_aborted_batch_notifies_committed_writes(self):
        real_insert = self.api.repository.insert
        calls = []

        def flaky_insert(record):
            calls.append(record)
            # canonical and alias rows of the first item succeed
            if len(calls) > 2:
                raise StoreUnavailable("database is locked")
            return real_insert(record)

        with patch.object(self.api.repository, "insert", side_effect=flaky_insert):
            response = self._post([
                {"model": "A", "count": 1, "userId": "abc"},
                {"model": "B", "count": 1, "userId": "xyz"},
            ])
        assert response.status == 500
        assert self.recorded == [["abc"]]

    # GET

    def test_get_all(self):
        self._post({"model": "A", "count": 1, "userId": "abc"})
        response = self.api.get_usage({})
        assert response.status == 200
        assert len(response.body["data"]) == 2

    def test_get_no_data(self):
        response = self.api.get_usage({"userId": "abc"})
        assert response.status == 200
        assert response.body["success"] is True
        assert response.body["data"] == []
        assert response.body["message"] == NO_DATA_MESSAGE

    def test_get_identity_miss_synthesizes_without_writing(self):
        self._post({"modelName": "Stable Diffusion", "imageCount": 3, "userId": "jane"})
        before = self.api.repository.count()

        response = self.api.get_usage({"userId": "john"})

        assert response.body["usedFallbackSynthesis"] is True
        assert response.body["message"] == SYNTHETIC_MESSAGE
        assert len(response.body["data"]) == 2
        assert all(item["synthetic"] for item in response.body["data"])
        assert self.api.repository.count() == before

    def test_get_force_test_data(self):
        response = self.api.get_usage({"userId": "abc", "forceTestData": "true"})
        assert response.status == 200
        assert response.body["usedFallbackSynthesis"] is True
        assert len(response.body["data"]) == 21

    def test_force_flag_must_be_true(self):
        response = self.api.get_usage({"userId": "abc", "forceTestData": "yes"})
        assert response.body["data"] == []

    def test_get_store_failure_is_500(self):
        with patch.object(
            self.api.repository, "fetch_for_identifier", side_effect=StoreUnavailable("db down")
        ):
            response = self.api.get_usage({"userId": "abc"})
        assert response.status == 500
        assert response.body["success"] is False
        assert response.body["error"] == "Error querying database: db down"

    def test_get_store_failure_with_forced_fallback(self):
        with patch.object(
            self.api.repository, "fetch_for_identifier", side_effect=StoreUnavailable("db down")
        ):
            response = self.api.get_usage({"userId": "abc", "forceTestData": "true"})
        assert response.status == 200
        assert response.body["success"] is True
        assert response.body["message"] == ERROR_FALLBACK_MESSAGE
        assert response.body["error"] == "Original error: db down"
        data = response.body["data"]
        assert len(data) == 6
        assert {item["userId"] for item in data} == {"abc"}
        assert {item["modelName"] for item in data} == {"Stable Diffusion", "DALL-E", "Midjourney"}

    def test_get_all_store_failure(self):
        with patch.object(self.api.repository, "fetch_window", side_effect=StoreUnavailable("x")):
            response = self.api.get_usage({})
        assert response.status == 500

    def test_get_all_store_failure_with_forced_fallback(self):
        with patch.object(self.api.repository, "fetch_window", side_effect=StoreUnavailable("db down")):
            response = self.api.get_usage({"forceTestData": "true"})
        assert response.status == 200
        assert response.body["success"] is True
        assert response.body["message"] == EMERGENCY_MESSAGE
        assert response.body["error"] == "Original error: db down"
        assert [item["userId"] for item in response.body["data"]] == ["emergency_fallback"] * 2

    def test_get_all_forced_flag_without_failure_returns_stored_data(self):
        self._post({"model": "A", "count": 1, "userId": "abc"})
        response = self.api.get_usage({"forceTestData": "true"})
        assert response.status == 200
        assert len(response.body["data"]) == 2
        assert "error" not in response.body

    # DELETE

    def test_delete(self):
        self._post({"model": "A", "count": 1, "userId": "abc"})
        response = self.api.delete_usage()
        assert response.status == 200
        assert response.body["message"] == CLEARED_MESSAGE
        assert response.body["deleted"] == 2
        assert self.api.repository.count() == 0

    def test_delete_failure(self):
        with patch.object(self.api.repository, "delete_all", side_effect=StoreUnavailable("x")):
            response = self.api.delete_usage()
        assert response.status == 500
        assert response.body["error"] == "Failed to clear model usage data"
