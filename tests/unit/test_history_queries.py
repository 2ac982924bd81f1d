"""Tests for history query activities."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from gen_studio.activities.history_queries import (
    clear_history,
    delete_history_record,
    list_history,
    parse_history_query,
    resolve_artifact_url,
)
from gen_studio.core.exceptions import ValidationError


class TestParseHistoryQuery:
    def test_defaults(self) -> None:
        assert parse_history_query({}, max_limit=30) == (30, None)

    def test_limit_capped(self) -> None:
        assert parse_history_query({"limit": "500"}, max_limit=30) == (30, None)

    def test_limit_and_type(self) -> None:
        assert parse_history_query({"limit": "5", "type": " Video "}, max_limit=30) == (5, "video")

    @pytest.mark.parametrize(
        "params",
        [{"limit": "abc"}, {"limit": "0"}, {"limit": "-3"}, {"type": "audio"}],
    )
    def test_invalid(self, params: dict[str, str]) -> None:
        with pytest.raises(ValidationError) as exc_info:
            parse_history_query(params, max_limit=30)
        assert exc_info.value.code == "INVALID_QUERY"


class TestHistoryOperations:
    def test_list_returns_camel_case_dicts(self) -> None:
        record = MagicMock()
        record.to_dict.return_value = {"id": "video_1", "operationId": "op"}
        store = MagicMock()
        store.load.return_value = [record]

        assert list_history(store, limit=5, generation_type="video") == [
            {"id": "video_1", "operationId": "op"}
        ]
        store.load.assert_called_once_with(5, "video")

    def test_delete_passes_through(self) -> None:
        store = MagicMock()
        store.delete.return_value = False
        assert delete_history_record(store, "video_1") is False

    def test_clear_returns_count(self) -> None:
        store = MagicMock()
        store.clear.return_value = 4
        assert clear_history(store) == 4


class TestResolveArtifactUrl:
    def test_signs_trimmed_ref(self) -> None:
        blob_store = MagicMock()
        blob_store.get_signed_artifact_url.return_value = "https://x/y?sig"

        assert resolve_artifact_url(blob_store, " generated-media/a.png ") == "https://x/y?sig"
        blob_store.get_signed_artifact_url.assert_called_once_with("generated-media/a.png")

    def test_empty_ref_rejected(self) -> None:
        with pytest.raises(ValidationError):
            resolve_artifact_url(MagicMock(), "  ")
