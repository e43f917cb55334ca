from core.logging_config import redact_sensitive, sanitize


def test_sanitize_masks_personal_data_recursively():
    payload = {
        "session_id": "sess_0001",
        "shipping_data": {"name": "Ana Torres", "email": "ana@example.com", "identification": "1710034065"},
        "items": [{"product_id": "p1", "card_number": "4111"}],
    }

    cleaned = sanitize(payload)

    assert cleaned["session_id"] == "sess_0001"
    assert cleaned["shipping_data"] == {"name": "Ana Torres", "email": "***", "identification": "***"}
    assert cleaned["items"] == [{"product_id": "p1", "card_number": "***"}]


def test_redact_keeps_event_name():
    event = redact_sensitive(None, "info", {"event": "payment_checkout_created", "access_token": "abc"})
    assert event == {"event": "payment_checkout_created", "access_token": "***"}
