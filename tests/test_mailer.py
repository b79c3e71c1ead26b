import mailer


def test_generate_verification_code():
    code = mailer.generate_verification_code()
    assert len(code) == 6
    assert code.isdigit()


def test_without_api_key_code_is_logged(monkeypatch, caplog):
    monkeypatch.setattr(mailer, "RESEND_API_KEY", "")
    with caplog.at_level("INFO", logger="mailer"):
        assert mailer.send_verification_email("fay@flameandcrumble.com", "123456", 15)
    assert "123456" in caplog.text


def test_sends_through_resend(monkeypatch):
    sent = []
    monkeypatch.setattr(mailer, "RESEND_API_KEY", "re_test")
    monkeypatch.setattr(mailer.resend.Emails, "send", lambda payload: sent.append(payload) or {"id": "email_1"})
    assert mailer.send_verification_email("fay@flameandcrumble.com", "123456", 15)
    assert sent[0]["to"] == ["fay@flameandcrumble.com"]
    assert "123456" in sent[0]["text"]


def test_delivery_failure(monkeypatch):
    def boom(payload):
        raise RuntimeError("quota exceeded")

    monkeypatch.setattr(mailer, "RESEND_API_KEY", "re_test")
    monkeypatch.setattr(mailer.resend.Emails, "send", boom)
    assert not mailer.send_verification_email("fay@flameandcrumble.com", "123456", 15)
