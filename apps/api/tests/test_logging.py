import json
import logging

from loguru import logger

from loyalbridge_api.core.logging import configure_logging


def test_json_lines_carry_service_metadata_and_exceptions(capsys) -> None:
    configure_logging(service_name="loyalbridge-api", environment="staging", version="0.1.0")

    logger.info("Processed order webhook", order_id="1001", points_awarded=42)
    try:
        raise RuntimeError("database is locked")
    except RuntimeError as exc:
        logger.opt(exception=exc).error("Failed to finalize reward from order webhook")
    logging.getLogger("sqlalchemy.engine").warning("pool overflow")

    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]

    assert lines[0]["message"] == "Processed order webhook"
    assert lines[0]["level"] == "info"
    assert lines[0]["service"] == "loyalbridge-api"
    assert lines[0]["environment"] == "staging"
    assert lines[0]["order_id"] == "1001"
    assert lines[0]["points_awarded"] == 42
    assert "trace_id" not in lines[0]
    assert lines[1]["exception"] == "RuntimeError('database is locked')"
    assert lines[2]["message"] == "pool overflow"
    assert lines[2]["level"] == "warning"
