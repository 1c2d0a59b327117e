"""
In-function fault injection.

Turning faults on through configuration makes it possible to verify, in a real
environment, that retries, timeouts, dead letter queues and alarms behave the
way they are expected to. Faults are off unless explicitly enabled.
"""

import functools
import random
import re
import tempfile
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional
from urllib.parse import urlparse

from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities import parameters
from aws_lambda_powertools.utilities.parameters.exceptions import GetParameterError, TransformParameterError
from pydantic import ValidationError

from lambda_resilience.aws.clients import register_client_hook, unregister_client_hook
from lambda_resilience.handlers.models.env_vars import get_handler_env_vars
from lambda_resilience.handlers.utils.errors import FaultInjectionError
from lambda_resilience.handlers.utils.observability import logger, metrics, tracer
from lambda_resilience.models.fault import FailureMode, FaultInjectionConfig

DENYLIST_HOOK_ID = 'lambda-resilience-fault-denylist'
DISK_SPACE_FILE_PREFIX = 'fault-injection-diskspace-'
CONFIG_MAX_AGE_SECONDS = 60

_MEGABYTE = b'\0' * (1024 * 1024)


def load_fault_config() -> FaultInjectionConfig:
    """
    Load the fault injection configuration.

    The SSM parameter named by FAILURE_INJECTION_PARAM wins over inline JSON in
    FAILURE_INJECTION_CONFIG. A missing or broken configuration disables fault
    injection rather than failing the invocation.
    """
    env_vars = get_handler_env_vars()

    try:
        if env_vars.FAILURE_INJECTION_PARAM:
            raw_config = parameters.get_parameter(
                env_vars.FAILURE_INJECTION_PARAM,
                transform='json',
                max_age=CONFIG_MAX_AGE_SECONDS,
            )
            return FaultInjectionConfig.model_validate(raw_config)

        if env_vars.FAILURE_INJECTION_CONFIG:
            return FaultInjectionConfig.model_validate_json(env_vars.FAILURE_INJECTION_CONFIG)

    except (GetParameterError, TransformParameterError, ValidationError) as e:
        logger.warning("Invalid fault injection configuration, fault injection disabled", extra={
            "error": str(e),
            "parameter": env_vars.FAILURE_INJECTION_PARAM,
        })

    return FaultInjectionConfig()


def api_status_response(event: Dict[str, Any], status_code: int) -> Dict[str, Any]:
    return {"statusCode": status_code}


@contextmanager
def fill_disk_space(size_mb: int, directory: Optional[str] = None) -> Iterator[str]:
    """Occupy ``size_mb`` megabytes in the temp directory for the duration of the block."""
    with tempfile.NamedTemporaryFile(prefix=DISK_SPACE_FILE_PREFIX, dir=directory) as filler:
        for _ in range(size_mb):
            filler.write(_MEGABYTE)
        filler.flush()
        yield filler.name


@contextmanager
def deny_hosts(patterns: List[str]) -> Iterator[None]:
    """Fail every AWS SDK request to a host matching one of ``patterns``."""
    compiled = [re.compile(pattern) for pattern in patterns]

    def _block_request(request, **kwargs):
        host = urlparse(request.url).hostname or ''
        if any(pattern.search(host) for pattern in compiled):
            logger.warning("Blocked request to denylisted host", extra={"host": host})
            raise FaultInjectionError(f"Request to {host} blocked by fault injection denylist")

    register_client_hook('before-send', _block_request, DENYLIST_HOOK_ID)
    try:
        yield
    finally:
        unregister_client_hook(DENYLIST_HOOK_ID)


def inject_fault(
    config_loader: Callable[[], FaultInjectionConfig] = load_fault_config,
    random_func: Callable[[], float] = random.random,
    sleep: Callable[[float], None] = time.sleep,
    status_response: Callable[[Dict[str, Any], int], Dict[str, Any]] = api_status_response,
):
    """
    Decorator injecting the configured fault into a handler.

    Args:
        config_loader: Returns the configuration for the current invocation
        random_func: Source of uniform values in [0, 1)
        sleep: Sleep function taking seconds
        status_response: Builds the handler response for the statuscode mode from
            the event and the configured status code
    """

    def decorator(handler):
        @functools.wraps(handler)
        def wrapper(event, context):
            config = config_loader()
            if not config.is_enabled or random_func() >= config.rate:
                return handler(event, context)

            mode = config.failure_mode
            metrics.add_metric(name="FaultInjected", unit=MetricUnit.Count, value=1)
            tracer.put_annotation("fault_injected", mode.value)
            logger.warning("Injecting fault", extra={"failure_mode": mode.value, "rate": config.rate})

            if mode == FailureMode.LATENCY:
                latency_ms = config.min_latency_ms + (config.max_latency_ms - config.min_latency_ms) * random_func()
                logger.info("Injecting latency", extra={"latency_ms": round(latency_ms)})
                sleep(latency_ms / 1000)
                return handler(event, context)

            if mode == FailureMode.EXCEPTION:
                raise FaultInjectionError(config.exception_msg)

            if mode == FailureMode.STATUSCODE:
                return status_response(event, config.status_code)

            if mode == FailureMode.DISKSPACE:
                with fill_disk_space(config.disk_space_mb):
                    return handler(event, context)

            with deny_hosts(config.denylist):
                return handler(event, context)

        return wrapper
    return decorator
