"""Tests for post-OAuth redirect path validation."""

import unittest

from broker.services.oauth_callback import validate_redirect_path


class TestValidateRedirectPath(unittest.TestCase):
    """Only same-site relative paths survive."""

    def test_safe_path_passes_through(self):
        self.assertEqual(validate_redirect_path("/dashboard"), "/dashboard")
        self.assertEqual(validate_redirect_path("/settings/integrations"), "/settings/integrations")
        self.assertEqual(validate_redirect_path("/connect?step=2"), "/connect?step=2")

    def test_open_redirects_fall_back_to_default(self):
        for path in [
            "http://evil.com",
            "https://evil.com/path",
            "//evil.com",
            "/a/../../etc",
            "javascript:alert(1)",
            "/redirect?to=JavaScript:alert(1)",
            "/x?data:text/html,boom",
            "/\\evil.com",
            "/foo//bar",
            "/go?u=http%3A%2F%2Fevil.com",
            "evil.com",
            "/line\r\nbreak",
        ]:
            with self.subTest(path=path):
                self.assertEqual(validate_redirect_path(path), "/integrations")

    def test_empty_falls_back(self):
        self.assertEqual(validate_redirect_path(None), "/integrations")
        self.assertEqual(validate_redirect_path(""), "/integrations")

    def test_custom_default(self):
        self.assertEqual(validate_redirect_path("//evil.com", default="/home"), "/home")


if __name__ == "__main__":
    unittest.main()
