"""
Unit tests for fault injection.
"""

import json
import os
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

from lambda_resilience.aws import clients
from lambda_resilience.handlers.utils.errors import FaultInjectionError
from lambda_resilience.handlers.utils.fault_injection import (
    DENYLIST_HOOK_ID,
    DISK_SPACE_FILE_PREFIX,
    deny_hosts,
    fill_disk_space,
    inject_fault,
    load_fault_config,
)
from lambda_resilience.models.fault import FailureMode, FaultInjectionConfig


def _config(**kwargs) -> FaultInjectionConfig:
    return FaultInjectionConfig(is_enabled=True, **kwargs)


def _handler(event, context):
    return {"statusCode": 200, "body": "handled"}


class TestLoadFaultConfig:
    """Test cases for load_fault_config."""

    def test_disabled_without_configuration(self):
        """Test that fault injection is off when nothing is configured."""
        assert load_fault_config().is_enabled is False

    def test_inline_json(self, monkeypatch):
        """Test reading the configuration from FAILURE_INJECTION_CONFIG."""
        monkeypatch.setenv("FAILURE_INJECTION_CONFIG", json.dumps({"isEnabled": True, "failureMode": "exception"}))

        config = load_fault_config()

        assert config.is_enabled is True
        assert config.failure_mode == FailureMode.EXCEPTION

    def test_invalid_inline_json_disables(self, monkeypatch):
        """Test that a broken configuration disables fault injection."""
        monkeypatch.setenv("FAILURE_INJECTION_CONFIG", '{"isEnabled": true, "rate": 7}')

        assert load_fault_config().is_enabled is False

    def test_ssm_parameter(self, monkeypatch):
        """Test reading the configuration from SSM Parameter Store."""
        monkeypatch.setenv("FAILURE_INJECTION_PARAM", "/app/failure-injection")

        with patch("lambda_resilience.handlers.utils.fault_injection.parameters.get_parameter") as mock_get:
            mock_get.return_value = {"isEnabled": True, "failureMode": "statuscode", "statusCode": 418}
            config = load_fault_config()

        mock_get.assert_called_once_with("/app/failure-injection", transform="json", max_age=60)
        assert config.failure_mode == FailureMode.STATUSCODE
        assert config.status_code == 418

    def test_missing_ssm_parameter_disables(self, monkeypatch):
        """Test that an unreadable parameter disables fault injection."""
        from aws_lambda_powertools.utilities.parameters.exceptions import GetParameterError

        monkeypatch.setenv("FAILURE_INJECTION_PARAM", "/app/missing")

        with patch(
            "lambda_resilience.handlers.utils.fault_injection.parameters.get_parameter",
            side_effect=GetParameterError("ParameterNotFound"),
        ):
            assert load_fault_config().is_enabled is False


class TestInjectFault:
    """Test cases for the inject_fault decorator."""

    def test_disabled_runs_handler(self, lambda_context):
        """Test that a disabled configuration leaves the handler alone."""
        handler = inject_fault(config_loader=FaultInjectionConfig)(_handler)

        assert handler({}, lambda_context)["body"] == "handled"

    def test_rate_skips_fault(self, lambda_context):
        """Test that the rate decides whether an invocation gets a fault."""
        config = _config(failure_mode=FailureMode.EXCEPTION, rate=0.3)
        handler = inject_fault(config_loader=lambda: config, random_func=lambda: 0.5)(_handler)

        assert handler({}, lambda_context)["body"] == "handled"

    def test_latency(self, lambda_context):
        """Test that latency is injected before the handler runs."""
        sleep = Mock()
        config = _config(failure_mode=FailureMode.LATENCY, min_latency_ms=100, max_latency_ms=300)
        handler = inject_fault(config_loader=lambda: config, random_func=lambda: 0.5, sleep=sleep)(_handler)

        assert handler({}, lambda_context)["body"] == "handled"
        sleep.assert_called_once_with(0.2)

    def test_exception(self, lambda_context):
        """Test that an exception is raised instead of running the handler."""
        config = _config(failure_mode=FailureMode.EXCEPTION, exception_msg="chaos")
        handler = inject_fault(config_loader=lambda: config, random_func=lambda: 0.0)(_handler)

        with pytest.raises(FaultInjectionError) as exc_info:
            handler({}, lambda_context)

        assert exc_info.value.message == "chaos"

    def test_status_code(self, lambda_context):
        """Test that the configured status code is returned."""
        config = _config(failure_mode=FailureMode.STATUSCODE, status_code=503)
        handler = inject_fault(config_loader=lambda: config, random_func=lambda: 0.0)(_handler)

        assert handler({}, lambda_context) == {"statusCode": 503}

    def test_status_code_custom_response(self, lambda_context):
        """Test that the status code response can be shaped for the event source."""
        config = _config(failure_mode=FailureMode.STATUSCODE, status_code=500)
        status_response = Mock(return_value={"batchItemFailures": []})
        handler = inject_fault(config_loader=lambda: config, random_func=lambda: 0.0, status_response=status_response)(_handler)

        assert handler({"Records": []}, lambda_context) == {"batchItemFailures": []}
        status_response.assert_called_once_with({"Records": []}, 500)

    def test_disk_space(self, lambda_context, tmp_path):
        """Test that disk space is occupied while the handler runs."""
        config = _config(failure_mode=FailureMode.DISKSPACE, disk_space_mb=1)
        seen = []

        def handler(event, context):
            seen.extend(name for name in os.listdir(tmp_path) if name.startswith(DISK_SPACE_FILE_PREFIX))
            return "done"

        with patch("tempfile.tempdir", str(tmp_path)):
            wrapped = inject_fault(config_loader=lambda: config, random_func=lambda: 0.0)(handler)
            assert wrapped({}, lambda_context) == "done"

        assert len(seen) == 1
        assert os.listdir(tmp_path) == []

    def test_denylist(self, lambda_context):
        """Test that the denylist hook is active only while the handler runs."""
        config = _config(failure_mode=FailureMode.DENYLIST, denylist=[r"dynamodb\..*\.amazonaws\.com"])

        def handler(event, context):
            return DENYLIST_HOOK_ID in clients._event_hooks

        wrapped = inject_fault(config_loader=lambda: config, random_func=lambda: 0.0)(handler)

        assert wrapped({}, lambda_context) is True
        assert DENYLIST_HOOK_ID not in clients._event_hooks


class TestFaultHelpers:
    """Test cases for the fault helpers."""

    def test_fill_disk_space(self, tmp_path):
        """Test that the filler file has the requested size and is removed afterwards."""
        with fill_disk_space(2, directory=str(tmp_path)) as path:
            assert os.path.getsize(path) == 2 * 1024 * 1024

        assert not os.path.exists(path)

    def test_deny_hosts_blocks_matching_requests(self):
        """Test that requests to denylisted hosts fail."""
        with deny_hosts([r"^dynamodb\."]):
            _, block_request = clients._event_hooks[DENYLIST_HOOK_ID]

            with pytest.raises(FaultInjectionError):
                block_request(SimpleNamespace(url="https://dynamodb.us-east-1.amazonaws.com/"))

            assert block_request(SimpleNamespace(url="https://sqs.us-east-1.amazonaws.com/")) is None

    def test_deny_hosts_registers_on_cached_clients(self):
        """Test that the hook reaches clients created before and after it is registered."""
        existing = Mock()
        clients._clients[("sqs", "us-east-1", None)] = existing

        with deny_hosts([r"sqs"]):
            event_name, block_request = clients._event_hooks[DENYLIST_HOOK_ID]
            existing.meta.events.register.assert_called_once_with(event_name, block_request, unique_id=DENYLIST_HOOK_ID)

        existing.meta.events.unregister.assert_called_once_with(event_name, block_request, unique_id=DENYLIST_HOOK_ID)
