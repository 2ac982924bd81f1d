"""Tests for user-facing error message mapping."""

from __future__ import annotations

from gen_studio.core.error_messages import (
    EMPTY_RESULT_MESSAGE,
    ErrorKind,
    rewrite_model_not_found,
    strip_error_prefix,
    to_user_message,
)

NOT_FOUND = (
    "Publisher Model `projects/my-proj/locations/us-central1/publishers/google/"
    "models/veo-3.1-generate-preview` not found."
)


class TestStripErrorPrefix:
    def test_strips_all_occurrences(self) -> None:
        assert strip_error_prefix("Error: Error: quota exceeded") == "quota exceeded"

    def test_untouched_without_prefix(self) -> None:
        assert strip_error_prefix("quota exceeded") == "quota exceeded"

    def test_embedded_prefix(self) -> None:
        assert strip_error_prefix("Request failed. Error: bad input") == "Request failed. bad input"


class TestRewriteModelNotFound:
    def test_known_model_uses_label(self) -> None:
        message = rewrite_model_not_found(NOT_FOUND)
        assert message == (
            "You don't have access to the model 'Veo 3.1', please select another one "
            "in the top dropdown menu for now, and reach out to your IT Admin to "
            "request access to 'Veo 3.1'."
        )

    def test_unknown_model_uses_raw_id(self) -> None:
        raw = NOT_FOUND.replace("veo-3.1-generate-preview", "veo-9")
        assert "'veo-9'" in rewrite_model_not_found(raw)

    def test_injected_labels(self) -> None:
        message = rewrite_model_not_found(NOT_FOUND, {"veo-3.1-generate-preview": "Video Pro"})
        assert "'Video Pro'" in message

    def test_other_messages_unchanged(self) -> None:
        assert rewrite_model_not_found("permission denied") == "permission denied"


class TestToUserMessage:
    def test_timeout(self) -> None:
        assert to_user_message(ErrorKind.TIMEOUT) == "Video generation timed out after 30 attempts."

    def test_timeout_custom_attempts(self) -> None:
        assert "after 5 attempts" in to_user_message(ErrorKind.TIMEOUT, attempts=5)

    def test_empty_result(self) -> None:
        assert to_user_message(ErrorKind.EMPTY_RESULT, "ignored") == EMPTY_RESULT_MESSAGE

    def test_transport(self) -> None:
        assert (
            to_user_message(ErrorKind.TRANSPORT, "Error: connection reset")
            == "Error checking video status: connection reset"
        )

    def test_backend_strips_prefix(self) -> None:
        assert to_user_message(ErrorKind.BACKEND, "Error: quota") == "quota"

    def test_submission_rewrites_model_not_found(self) -> None:
        message = to_user_message(ErrorKind.SUBMISSION, f"Error: {NOT_FOUND}")
        assert message.startswith("You don't have access to the model 'Veo 3.1'")
