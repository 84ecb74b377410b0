import io
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
import pytest
import structlog

from agentdesk.tools.exceptions import ToolConfigurationError
from agentdesk.tools.registry import ToolRegistry
from utils.logger import init_logger, trace_method


def _write_cfg(tmp_path: Path, logging_cfg: dict) -> Path:
    p = tmp_path / "logcfg.json"
    p.write_text(json.dumps({"logging": logging_cfg}))
    return p


def _find_handler(handlers, klass):
    return next((h for h in handlers if isinstance(h, klass)), None)


def _console_formatter():
    stream_h = _find_handler(logging.getLogger().handlers, logging.StreamHandler)
    assert stream_h is not None
    fmt = stream_h.formatter
    assert isinstance(fmt, structlog.stdlib.ProcessorFormatter)
    return fmt


@pytest.fixture(autouse=True)
def _no_colour(monkeypatch):
    monkeypatch.delenv("LOG_CONSOLE_RENDERER", raising=False)
    monkeypatch.setattr("utils.logger._supports_colour", lambda: False)


@pytest.mark.parametrize(
    "configured, env, expected",
    [
        ("pretty", None, structlog.dev.ConsoleRenderer),
        ("json", None, structlog.processors.JSONRenderer),
        ("pretty", "json", structlog.processors.JSONRenderer),
        ("json", " Pretty ", structlog.dev.ConsoleRenderer),
    ],
)
def test_console_renderer_from_config_or_env(monkeypatch, tmp_path, configured, env, expected):
    if env is not None:
        monkeypatch.setenv("LOG_CONSOLE_RENDERER", env)
    cfg_path = _write_cfg(tmp_path, {"console": {"enabled": True, "renderer": configured}})

    init_logger(cfg_path)

    assert isinstance(_console_formatter().processors[-1], expected)


def test_defaults_are_pretty_console_at_info(tmp_path):
    init_logger(_write_cfg(tmp_path, {}))

    assert logging.getLogger().level == logging.INFO
    assert isinstance(_console_formatter().processors[-1], structlog.dev.ConsoleRenderer)


def test_reinit_replaces_handlers(tmp_path):
    cfg_path = _write_cfg(tmp_path, {"console": {"enabled": True}})

    init_logger(cfg_path)
    init_logger(cfg_path)

    stream_handlers = [h for h in logging.getLogger().handlers if type(h) is logging.StreamHandler]
    assert len(stream_handlers) == 1


def test_json_console_renders_event_fields(monkeypatch, tmp_path):
    fake_stdout = io.StringIO()
    monkeypatch.setattr("sys.stdout", fake_stdout)
    init_logger(_write_cfg(tmp_path, {"level": "INFO", "console": {"renderer": "json"}}))

    structlog.get_logger("agentdesk.test").info("tool_executed", tool="calculator", success=True)

    record = json.loads(fake_stdout.getvalue().strip().splitlines()[-1])
    assert record["event"] == "tool_executed"
    assert record["tool"] == "calculator"
    assert record["level"] == "info"
    assert record["logger"] == "agentdesk.test"


def test_foreign_stdlib_records_share_the_renderer(monkeypatch, tmp_path):
    fake_stdout = io.StringIO()
    monkeypatch.setattr("sys.stdout", fake_stdout)
    init_logger(_write_cfg(tmp_path, {"console": {"renderer": "json"}}))

    logging.getLogger("some.library").warning("connection pool full")

    record = json.loads(fake_stdout.getvalue().strip().splitlines()[-1])
    assert record["event"] == "connection pool full"
    assert record["logger"] == "some.library"


def test_library_levels_from_config(tmp_path):
    init_logger(_write_cfg(tmp_path, {"libraries": {"LiteLLM": "WARNING", "httpx": "error"}}))

    assert logging.getLogger("LiteLLM").level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.ERROR


def test_file_defaults_when_enabled_minimally(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    init_logger(_write_cfg(tmp_path, {"console": {"enabled": False}, "file": {"enabled": True}}))

    file_h = _find_handler(logging.getLogger().handlers, logging.FileHandler)
    assert isinstance(file_h, RotatingFileHandler)
    assert Path(file_h.baseFilename).resolve() == (tmp_path / "logs" / "app.log").resolve()
    assert file_h.level == logging.DEBUG
    assert file_h.maxBytes == 10_000_000
    assert file_h.backupCount == 5


def test_plain_file_handler_when_rotation_disabled(tmp_path):
    log_path = tmp_path / "plain.log"
    init_logger(
        _write_cfg(
            tmp_path,
            {"console": {"enabled": False}, "file": {"enabled": True, "path": str(log_path), "rotation": {"enabled": False}}},
        )
    )

    file_h = _find_handler(logging.getLogger().handlers, logging.FileHandler)
    assert file_h is not None and not isinstance(file_h, RotatingFileHandler)
    assert Path(file_h.baseFilename) == log_path


def test_invalid_console_renderer_raises(tmp_path):
    with pytest.raises(ValueError, match=r"Invalid console logging renderer option: 'xml'.*Allowed: json, pretty"):
        init_logger(_write_cfg(tmp_path, {"console": {"renderer": "xml"}}))


def test_missing_config_path_raises():
    with pytest.raises(FileNotFoundError):
        init_logger("/nonexistent/path/config.json")


def test_invalid_json_raises(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{ not: valid }")
    with pytest.raises(ValueError):
        init_logger(bad)


class _Capture:
    def __init__(self):
        self.calls = []

    def debug(self, event, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append((event, kwargs))


def test_trace_method_logs_entry_exit_and_errors(monkeypatch):
    capture = _Capture()
    monkeypatch.setattr("utils.logger.get_logger", lambda name: capture)

    class Sample:
        @trace_method
        def ok(self):  # type: ignore[no-untyped-def]
            return "OK"

        @trace_method
        def fail(self):  # type: ignore[no-untyped-def]
            raise RuntimeError("X")

    s = Sample()
    assert s.ok() == "OK"
    assert [c[0] for c in capture.calls] == ["method_entry", "method_exit"]
    assert capture.calls[1][1] == {"method": "Sample.ok", "success": True}

    capture.calls.clear()
    with pytest.raises(RuntimeError):
        s.fail()
    assert capture.calls[1][1]["method"] == "Sample.fail"
    assert capture.calls[1][1]["success"] is False
    assert capture.calls[1][1]["error"] == "X"


def test_tool_registration_is_traced(monkeypatch):
    capture = _Capture()
    monkeypatch.setattr("utils.logger.get_logger", lambda name: capture)
    registry = ToolRegistry(include_builtins=False)

    registry.register("echo", lambda parameters, config: parameters)
    with pytest.raises(ToolConfigurationError):
        registry.register("", lambda parameters, config: None)

    exits = [kwargs for event, kwargs in capture.calls if event == "method_exit"]
    assert exits[0] == {"method": "ToolRegistry.register", "success": True}
    assert exits[1]["success"] is False
