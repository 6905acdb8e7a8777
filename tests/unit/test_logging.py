"""
Unit tests for the structlog processors.
"""

import logging

from ledgerbridge import __version__
from ledgerbridge.utils.logging import (
    MASK,
    QUIET_LOGGERS,
    configure_logging,
    mask_secrets,
    service_context,
)


class TestProcessors:
    def test_credentials_are_masked(self):
        event = mask_secrets(
            None,
            "info",
            {"event": "token_refreshed", "access_token": "abc", "refresh_token": "def", "realm_id": "9130"},
        )

        assert event["access_token"] == MASK
        assert event["refresh_token"] == MASK
        assert event["realm_id"] == "9130"

    def test_empty_credentials_are_left_alone(self):
        event = mask_secrets(None, "info", {"event": "llm_unconfigured", "api_key": ""})

        assert event["api_key"] == ""

    def test_service_context_does_not_override_bound_values(self):
        add_service = service_context("sandbox")

        event = add_service(None, "info", {"event": "x", "intuit_env": "production"})

        assert event["service"] == "ledgerbridge"
        assert event["version"] == __version__
        assert event["intuit_env"] == "production"


def test_configure_logging_quiets_http_loggers():
    configure_logging()

    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).getEffectiveLevel() >= logging.WARNING
