# tests/sessions/test_codec.py
"""Unit tests for the signed session cookie codec."""

import pytest

from fleetauth.sessions.codec import SessionCodec

OLD_SECRET = "previous-session-secret-abcdefghijklmnop"
NEW_SECRET = "current-session-secret-qrstuvwxyz0123456"


class TestSessionCodec:

    def test_round_trip(self, codec):
        value = codec.encode("abc123")

        assert value.startswith("s:abc123.")
        assert codec.decode(value) == "abc123"

    def test_session_id_with_dots_round_trips(self, codec):
        assert codec.decode(codec.encode("a.b.c")) == "a.b.c"

    @pytest.mark.parametrize("value", [None, "", "abc123", "s:", "s:abc123", "s:.sig", "s:abc123."])
    def test_malformed_values_decode_to_none(self, codec, value):
        assert codec.decode(value) is None

    def test_tampered_signature_rejected(self, codec):
        value = codec.encode("abc123")
        tampered = value[:-1] + ("A" if value[-1] != "A" else "B")

        assert codec.decode(tampered) is None

    def test_swapped_session_id_rejected(self, codec):
        signature = codec.encode("abc123").rpartition(".")[2]

        assert codec.decode(f"s:other.{signature}") is None

    def test_other_secret_rejected(self, codec):
        foreign = SessionCodec(["some-completely-different-secret-value"])

        assert codec.decode(foreign.encode("abc123")) is None

    def test_rotation_accepts_previous_secret(self):
        old_codec = SessionCodec([OLD_SECRET])
        rotated = SessionCodec([NEW_SECRET, OLD_SECRET])

        old_cookie = old_codec.encode("abc123")

        assert rotated.decode(old_cookie) == "abc123"
        # New cookies are signed with the current secret only
        assert old_codec.decode(rotated.encode("abc123")) is None

    def test_requires_a_secret(self):
        with pytest.raises(ValueError):
            SessionCodec([])
