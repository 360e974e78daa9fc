import mailer


def test_send_email_is_skipped_without_api_key(monkeypatch):
    monkeypatch.setattr(mailer, "RESEND_API_KEY", "")

    def unexpected(payload):
        raise AssertionError("resend should not be called")

    monkeypatch.setattr(mailer.resend.Emails, "send", unexpected)
    assert mailer.send_email("a@example.com", "Hi", "<p>hi</p>") is False
    assert mailer.send_quietly(mailer.send_welcome_email, "a@example.com", "Ana") is False


def test_send_email_posts_through_resend(monkeypatch):
    sent = []
    monkeypatch.setattr(mailer, "RESEND_API_KEY", "re_test")
    monkeypatch.setattr(mailer.resend.Emails, "send", lambda payload: sent.append(payload) or {"id": "em_1"})

    assert mailer.send_email("a@example.com", "Hi", "<p>hi</p>") == {"id": "em_1"}
    assert sent[0]["to"] == ["a@example.com"]
    assert sent[0]["from"] == mailer.MAIL_FROM


def test_send_quietly_reports_failures(monkeypatch):
    monkeypatch.setattr(mailer, "RESEND_API_KEY", "re_test")

    def broken(payload):
        raise RuntimeError("rate limited")

    monkeypatch.setattr(mailer.resend.Emails, "send", broken)
    assert mailer.send_quietly(mailer.send_welcome_email, "a@example.com", "Ana") is False


def test_new_products_digest_lists_items():
    html = mailer.render_new_products([
        {"title": "Tee", "price": 35, "images": [{"url": "https://img.example.com/tee.jpg"}]},
        {"title": "Cap", "price": 12.5, "images": []},
    ])
    assert "https://img.example.com/tee.jpg" in html
    assert "$35.00" in html
    assert "$12.50" in html
    assert html.count("<img") == 1
