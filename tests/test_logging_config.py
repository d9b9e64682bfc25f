"""Tests for structured logging and the operator error taxonomy."""

import json
import logging

import pytest

from config.logging_config import JSONFormatter, configure_logging, deployment_logger
from config.settings import OrchestratorSettings
from deployer.errors import (
    DeploymentInProgressError,
    DeviceOperationError,
    MigrateFailure,
    SwitchConnectivityError,
    describe_error,
    is_user_error,
)
from deployer.pipeline import OutcomeKind, classify_error


def make_record(**extra):
    record = logging.LogRecord("deployer.test", logging.INFO, __file__, 10, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(make_record()))
        assert entry["message"] == "hello world"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "deployer.test"
        assert entry["timestamp"].endswith("Z")

    def test_context_attributes(self):
        entry = json.loads(JSONFormatter().format(make_record(deployment_id="dep-1", component_id="srv-1")))
        assert entry["deployment_id"] == "dep-1"
        assert entry["component_id"] == "srv-1"
        assert "cert_name" not in entry

    def test_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            import sys

            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        entry = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in entry["exception"]


class TestConfigureLogging:
    def test_json_console(self):
        logger = configure_logging(OrchestratorSettings(log_level="DEBUG", log_format="json"))
        assert logger.name == "deployer"
        assert logger.level == logging.DEBUG
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "deployer.log"
        logger = configure_logging(OrchestratorSettings(log_format="text", log_file=str(log_file)))

        assert len(logger.handlers) == 2
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

        for handler in logger.handlers:
            handler.close()

    def test_reconfigure_replaces_handlers(self):
        configure_logging(OrchestratorSettings())
        logger = configure_logging(OrchestratorSettings())
        assert len(logger.handlers) == 1

    def test_deployment_logger_is_child(self):
        assert deployment_logger("dep-1").name == "deployer.deployment.dep-1"


class TestErrorTaxonomy:
    @pytest.mark.parametrize("error", [
        SwitchConnectivityError("Failed to determine switch connectivity for rack-1"),
        DeploymentInProgressError("Deployment dep-1 is already in progress"),
    ])
    def test_user_errors_shown_verbatim(self, error):
        assert is_user_error(error)
        assert describe_error(error, "web-01") == str(error)

    def test_internal_errors_get_generic_message(self):
        error = DeviceOperationError("agent exploded", "trace")
        assert not is_user_error(error)
        assert describe_error(error, "web-01") == "web-01 deployment failed"

    def test_classification(self):
        assert classify_error(MigrateFailure("no spare")) == OutcomeKind.TERMINAL
        assert classify_error(DeviceOperationError("apply failed")) == OutcomeKind.RECOVERABLE
