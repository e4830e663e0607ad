import json
import logging

from entity_resolution.logging import ConsoleFormatter, JSONFormatter, RunContextFilter, setup_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("entity_resolution.steps", logging.INFO, __file__, 1, "scored %d", (3,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def _close(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_json_formatter_includes_extra_fields() -> None:
    payload = json.loads(JSONFormatter().format(_record(stage="scoring", count=3)))
    assert payload["message"] == "scored 3"
    assert payload["level"] == "INFO"
    assert payload["stage"] == "scoring"
    assert payload["count"] == 3
    assert "record_id" not in payload
    assert "levelno" not in payload


def test_console_formatter_is_single_line() -> None:
    line = ConsoleFormatter().format(_record())
    assert "[INFO    ] entity_resolution.steps: scored 3" in line
    assert "\n" not in line


def test_console_formatter_tags_the_stage() -> None:
    line = ConsoleFormatter().format(_record(stage="blocking"))
    assert line.endswith("scored 3 (blocking)")


def test_run_filter_keeps_an_explicit_run() -> None:
    record = _record(run="earlier")
    assert RunContextFilter("run-test").filter(record)
    assert record.run == "earlier"


def test_setup_logging_writes_json_file_per_run(tmp_path) -> None:
    logger = setup_logging(
        name="entity_resolution.test", log_dir=tmp_path, json_output=True, console=False, run_name="run-test"
    )
    logger.info("hello", extra={"stage": "pipeline"})
    _close(logger)

    log_file = tmp_path / "run-test.log"
    lines = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert lines[-1]["message"] == "hello"
    assert lines[-1]["stage"] == "pipeline"
    assert lines[-1]["run"] == "run-test"


def test_setup_logging_appends_across_runs(tmp_path) -> None:
    for message in ("first", "second"):
        logger = setup_logging(name="entity_resolution.test", log_dir=tmp_path, console=False, run_name="run")
        logger.info(message)
        _close(logger)

    lines = (tmp_path / "run.log").read_text(encoding="utf-8").splitlines()
    assert [line.rsplit(": ", 1)[-1] for line in lines] == ["first", "second"]
    assert all(" run entity_resolution.test" in line for line in lines)
