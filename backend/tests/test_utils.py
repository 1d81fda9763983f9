"""Tests for core utilities, settings and logging setup."""

import logging
import re

import pytest
import structlog

from app.config import Settings
from core.exceptions import (
    ActionNotFound,
    ExecutionTimeout,
    MissingEntryPoint,
    RetryExhausted,
    StepExecutionError,
    WorkflowError,
    WorkflowNotFound,
)
from core.logging_config import bind_execution_context, setup_logging
from core.utils import (
    generate_execution_id,
    get_field_value,
    interpolate_config,
    interpolate_template,
    resolve_path,
)


@pytest.mark.unit
class TestFieldPath:
    DATA = {"order": {"items": [{"sku": "A1"}, {"sku": "B2"}], "total": 0}, "flag": False}

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("order.total", 0),
            ("order.items.1.sku", "B2"),
            ("order.items.5.sku", None),
            ("order.items.x", None),
            ("order.missing.deeper", None),
            ("flag", False),
            ("", DATA),
            (None, DATA),
        ],
    )
    def test_get_field_value(self, path, expected):
        assert get_field_value(self.DATA, path) == expected

    def test_non_container_root(self):
        assert get_field_value(None, "a.b") is None
        assert get_field_value(42, "a") is None

    def test_underscore_attributes_are_hidden(self):
        class Order:
            total = 5
            _secret = "x"

        assert get_field_value({"order": Order()}, "order.total") == 5
        assert get_field_value({"order": Order()}, "order._secret") is None
        assert get_field_value(Order(), "__class__") is None

    def test_resolve_path_roots(self):
        context = {"loopIndex": 3}
        assert resolve_path(self.DATA, context, "data.order.total") == 0
        assert resolve_path(self.DATA, context, "order.total") == 0
        assert resolve_path(self.DATA, context, "context.loopIndex") == 3
        assert resolve_path(self.DATA, context, "data") == self.DATA
        assert resolve_path(self.DATA, context, "") == self.DATA


@pytest.mark.unit
class TestInterpolation:
    def test_data_and_context_placeholders(self):
        rendered = interpolate_template(
            "Order {{ data.id }} for {{context.user.name}}", {"id": 7}, {"user": {"name": "Ada"}}
        )
        assert rendered == "Order 7 for Ada"

    def test_unresolved_renders_empty(self):
        assert interpolate_template("[{{data.none}}][{{data.off}}]", {"off": False}, {}) == "[][]"

    def test_unknown_roots_left_alone(self):
        assert interpolate_template("{{steps.a.output}}", {}, {}) == "{{steps.a.output}}"

    def test_interpolate_config_recurses(self):
        config = {"url": "/u/{{data.id}}", "headers": {"X-Id": "{{data.id}}"}, "tags": ["{{data.tag}}", 3], "n": 5}
        assert interpolate_config(config, {"id": 1, "tag": "t"}, {}) == {
            "url": "/u/1",
            "headers": {"X-Id": "1"},
            "tags": ["t", 3],
            "n": 5,
        }


@pytest.mark.unit
class TestExecutionIds:
    def test_format_and_uniqueness(self):
        ids = {generate_execution_id() for _ in range(500)}
        assert len(ids) == 500
        assert all(re.fullmatch(r"exec_\d+_[0-9a-z]{9}", eid) for eid in ids)


@pytest.mark.unit
class TestExceptions:
    def test_status_codes(self):
        assert WorkflowNotFound("wf").status_code == 404
        assert MissingEntryPoint("wf").status_code == 422
        assert ActionNotFound("a", "s").status_code == 404
        assert ExecutionTimeout("e", 1.0).status_code == 504

    def test_hierarchy(self):
        error = RetryExhausted("s", 4, RuntimeError("x"))
        assert isinstance(error, StepExecutionError)
        assert isinstance(error, WorkflowError)
        assert error.attempts == 4
        assert str(error) == "Step 's' failed after 4 attempts: x"


@pytest.mark.unit
class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.MAX_STEP_DEPTH == 200
        assert settings.LOOP_MAX_ITERATIONS == 100

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("RETRY_MAX_RETRIES", "7")
        monkeypatch.setenv("ENVIRONMENT", "production")
        settings = Settings()
        assert settings.RETRY_MAX_RETRIES == 7
        assert settings.is_production is True
        assert settings.is_development is False


@pytest.mark.unit
class TestLogging:
    def test_setup_logging_installs_single_handler(self):
        setup_logging()
        setup_logging()
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_level_override(self):
        setup_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG
        setup_logging(level="nonsense")
        assert logging.getLogger().level == logging.INFO

    def test_bind_execution_context(self):
        structlog.contextvars.clear_contextvars()
        bind_execution_context("exec_1_abc", "wf")
        assert structlog.contextvars.get_contextvars() == {"execution_id": "exec_1_abc", "workflow_id": "wf"}
        structlog.contextvars.clear_contextvars()
