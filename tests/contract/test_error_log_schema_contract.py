from __future__ import annotations

import json
from pathlib import Path

import jsonschema

from leadpitch.logging.error_log import ErrorLogBuffer
from leadpitch.models.error_record import ErrorRecord

"""Error log JSON Lines contract: one object per line, fixed key set."""

ERROR_LOG_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "required": ["timestamp", "operation", "item", "recipient", "error_type", "message"],
    "properties": {
        "timestamp": {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z$"},
        "operation": {"enum": ["IMPORT", "EXPORT", "GENERATE", "SEND", "TEST-EMAIL", "QUOTA"]},
        "item": {"type": "integer", "minimum": -1},
        "recipient": {"type": "string"},
        "error_type": {"type": "string", "pattern": "^[A-Z][A-Z0-9_]*$"},
        "message": {"type": "string"},
    },
}


def test_error_record_line_matches_schema():
    line = ErrorRecord.create("SEND", 3, "bob@example.com", "PROVIDER_ERROR", "rejected").to_json_line()
    jsonschema.validate(json.loads(line), ERROR_LOG_SCHEMA)


def test_flushed_file_is_json_lines(tmp_path: Path):
    buf = ErrorLogBuffer(logs_dir=tmp_path)
    buf.record("GENERATE", 0, "ann@example.com", "PROVIDER_ERROR", "Failed to generate pitch: timeout")
    buf.record("IMPORT", -1, "leads.csv", "EMPTY_FILE_ERROR", "The file appears to be empty")
    path = buf.flush()

    assert path is not None and path.name.startswith("errors-") and path.suffix == ".log"
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    for line in lines:
        jsonschema.validate(json.loads(line), ERROR_LOG_SCHEMA)


def test_non_ascii_messages_are_kept_verbatim(tmp_path: Path):
    buf = ErrorLogBuffer(logs_dir=tmp_path)
    buf.record("SEND", 0, "太郎@example.jp", "PROVIDER_ERROR", "送信失敗")
    text = buf.flush().read_text(encoding="utf-8")
    assert "送信失敗" in text
