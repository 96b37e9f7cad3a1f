import json

from loguru import logger

from giftbridge_api.core.logging import configure_logging, mask_gift_code


def test_mask_gift_code_keeps_prefix_and_tail():
    assert mask_gift_code("AMAZON-GIFT-CODE-ABC123") == "AMAZON-GIFT-CODE-****23"
    assert mask_gift_code("XYZ") == "***"
    assert mask_gift_code("PLAINCODE99") == "*********99"


def test_structured_logs_redact_gift_codes(capsys):
    configure_logging(service_name="giftbridge-test", environment="development", version="test", level="INFO")

    logger.info("Issued AMAZON-GIFT-CODE-QWERTY to buyer", code="AMAZON-GIFT-CODE-QWERTY", amount_cents=500)

    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    payload = json.loads(lines[-1])
    assert payload["service"] == "giftbridge-test"
    assert payload["message"] == "Issued AMAZON-GIFT-CODE-****TY to buyer"
    assert payload["code"] == "AMAZON-GIFT-CODE-****TY"
    assert payload["amount_cents"] == 500
    assert "QWERTY" not in lines[-1]
