"""Tests for structured logging helpers."""

import json
import logging

from swarm_fleet.errors import ExecutionError, NotFoundError
from swarm_fleet.logging import FleetJsonFormatter, OperationLogger, get_logger


def test_operation_logger_drops_sensitive_context(caplog):
    logger = get_logger("swarm_fleet.test")

    with caplog.at_level(logging.INFO, logger="swarm_fleet.test"):
        op = OperationLogger(logger).start("provision_node", node_id="n1", ssh_key="PRIVATE", worker_token="t")
        op.failure("boom", stderr="E: secret output", exit_code=1)

    start, failure = caplog.records
    assert start.operation == "provision_node"
    assert start.node_id == "n1"
    assert not hasattr(start, "ssh_key")
    assert not hasattr(start, "worker_token")
    assert failure.event == "operation_failure"
    assert failure.exit_code == 1
    assert not hasattr(failure, "stderr")


def test_json_formatter_fields():
    formatter = FleetJsonFormatter(fmt="%(timestamp)s %(level)s %(name)s %(message)s")
    record = logging.LogRecord("swarm_fleet.x", logging.WARNING, __file__, 10, "hello", None, None)

    payload = json.loads(formatter.format(record))

    assert payload["message"] == "hello"
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "swarm_fleet.x"
    assert payload["source"]["line"] == 10


def test_with_context_keeps_type_and_details():
    error = ExecutionError("apt failed", exit_code=100, stderr="E: x", node_id="n1")

    wrapped = error.with_context("Failed to provision node")

    assert isinstance(wrapped, ExecutionError)
    assert str(wrapped) == "Failed to provision node: apt failed"
    assert wrapped.exit_code == 100
    assert wrapped.node_id == "n1"
    assert str(error) == "apt failed"
    assert NotFoundError("x").with_context("y").message == "y: x"
