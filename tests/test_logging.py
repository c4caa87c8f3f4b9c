"""Tests for the structured operations log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
import typer

from lregctl.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    lines = logger.operations_log_path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_operation_record_includes_steps_and_result(tmp_path: Path) -> None:
    """A completed operation is appended as one JSON line."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("setup", args={"port": 5000}, target={"kind": "registry"}) as op:
        op.add_step("certs.ca", detail={"path": tmp_path / "certs" / "ca.crt"})
        op.add_step("cosign.install", status="warning", detail="offline")
        op.warning("Setup complete with warnings.", warnings=["offline"])

    (record,) = _records(logger)
    assert record["command"] == "setup"
    assert record["args"] == {"port": 5000}
    assert record["target"] == {"kind": "registry"}
    assert [step["name"] for step in record["steps"]] == ["certs.ca", "cosign.install"]
    assert record["steps"][0]["detail"] == {"path": str(tmp_path / "certs" / "ca.crt")}
    assert record["result"]["status"] == "warning"
    assert record["result"]["warnings"] == ["offline"]
    assert record["duration_ms"] >= 0


def test_operation_without_result_defaults_to_success(tmp_path: Path) -> None:
    """Blocks that never set a result are logged as successful."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("config show"):
        pass

    (record,) = _records(logger)
    assert record["result"]["status"] == "success"


def test_operation_records_error_for_nonzero_exit(tmp_path: Path) -> None:
    """A typer.Exit escaping the block is recorded with its exit code."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(typer.Exit):
        with logger.operation("setup"):
            raise typer.Exit(code=4)

    (record,) = _records(logger)
    assert record["result"]["status"] == "error"
    assert record["result"]["rc"] == 4


def test_operation_keeps_explicit_error_result(tmp_path: Path) -> None:
    """An error recorded before raising is not overwritten."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(typer.Exit):
        with logger.operation("certs issue") as op:
            op.error("CA key missing", rc=4)
            raise typer.Exit(code=4)

    (record,) = _records(logger)
    assert record["result"]["message"] == "CA key missing"
    assert record["result"]["errors"] == ["CA key missing"]


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo", args={"foo": "bar"}) as op:
        op.success("done", changed=0)

    assert not log_dir.exists()


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("demo") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo-2") as op:
        op.success("done", changed=0)
