from trustgate.logging import _redact_pii, get_correlation_id, set_correlation_id


class TestRedaction:
    def test_secrets_are_replaced(self):
        event = _redact_pii(
            None,
            "info",
            {"event": "login", "password": "hunter22", "session_token": "abcdef123456"},
        )

        assert event["password"] == "***"
        assert event["session_token"] == "***"
        assert event["event"] == "login"

    def test_email_keeps_domain(self):
        event = _redact_pii(
            None, "info", {"event": "x", "new_email": "alice@example.com", "email": "bogus"}
        )

        assert event["new_email"] == "al***@example.com"
        assert event["email"] == "***"

    def test_other_fields_untouched(self):
        event = _redact_pii(None, "info", {"event": "x", "account_id": "a1", "devices": 3})

        assert event == {"event": "x", "account_id": "a1", "devices": 3}


class TestCorrelationId:
    def test_generated_when_missing(self):
        cid = set_correlation_id()

        assert cid
        assert get_correlation_id() == cid
        assert set_correlation_id("req-1") == "req-1"
