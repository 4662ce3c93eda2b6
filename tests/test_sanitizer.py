"""
Tests for Provider Output Sanitizer
"""

from playground.sanitizer import SECRET_MASK, mask_form_for_debug, sanitize_error_message


class TestSanitizeErrorMessage:
    """Tests for provider error text cleanup."""

    def test_plain_text_unchanged(self):
        assert sanitize_error_message("invalid_grant: code expired") == "invalid_grant: code expired"

    def test_strips_markup(self):
        message = '<script>alert("x")</script>Bad <b>request</b>'

        assert sanitize_error_message(message) == 'alert("x")Bad request'

    def test_truncates(self):
        assert sanitize_error_message("a" * 600) == "a" * 500

    def test_custom_length(self):
        assert sanitize_error_message("abcdef", max_length=3) == "abc"

    def test_strips_before_truncating(self):
        message = "<p>" + "x" * 10 + "</p>"

        assert sanitize_error_message(message, max_length=10) == "x" * 10

    def test_non_string_coerced(self):
        assert sanitize_error_message(404) == "404"


class TestMaskFormForDebug:
    """Tests for the debug echo of the outbound form."""

    def test_masks_client_secret(self):
        masked = mask_form_for_debug({"client_id": "abc", "client_secret": "hunter2"})

        assert masked["client_secret"] == SECRET_MASK
        assert masked["client_id"] == "abc"

    def test_truncates_long_code(self):
        code = "c" * 40

        masked = mask_form_for_debug({"code": code})

        assert masked["code"] == "c" * 20 + "..."

    def test_short_code_kept(self):
        masked = mask_form_for_debug({"code": "short"})

        assert masked["code"] == "short"

    def test_code_of_exactly_preview_length_kept(self):
        masked = mask_form_for_debug({"code": "x" * 20})

        assert masked["code"] == "x" * 20

    def test_does_not_mutate_input(self):
        form = {"client_secret": "s3cret", "code": "y" * 30}

        mask_form_for_debug(form)

        assert form == {"client_secret": "s3cret", "code": "y" * 30}

    def test_other_fields_echoed(self):
        form = {
            "grant_type": "authorization_code",
            "redirect_uri": "http://localhost:3000/callback",
            "code_verifier": "verifier",
        }

        assert mask_form_for_debug(form) == form
