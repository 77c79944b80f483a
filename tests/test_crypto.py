# FILE: tests/test_crypto.py
"""
Tests for app/core/crypto.py
Encrypted deep links carried by QR codes.
"""
from app.core.config import settings
from app.core.crypto import build_deep_link, get_cipher, read_deep_link


class TestDeepLinks:
    def test_link_points_at_verify_endpoint(self):
        link = build_deep_link({"Certificate_Number": "K-1"})
        assert link.startswith(settings.VERIFY_URL_BASE.rstrip("/") + "?q=")
        assert "K-1" not in link
        assert read_deep_link(link) == {"Certificate_Number": "K-1"}

    def test_bare_token_is_accepted(self):
        token = build_deep_link({"Certificate_Number": "K-2"}).split("?q=", 1)[1]
        assert read_deep_link(token)["Certificate_Number"] == "K-2"

    def test_other_key_cannot_read(self):
        link = build_deep_link({"Certificate_Number": "K-3"}, cipher=get_cipher(b"another secret"))
        assert read_deep_link(link) is None

    def test_tampered_token(self):
        link = build_deep_link({"Certificate_Number": "K-4"})
        assert read_deep_link(link[:-6] + "AAAAAA") is None
        assert read_deep_link("https://verify.example/?x=1") is None
