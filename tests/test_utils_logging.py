"""
Tests for utils.logging - JSON formatting, secret redaction, setup.
"""

import json
import logging
import sys

import pytest
from freezegun import freeze_time

from prompt_forge.utils.logging import (
    JSONFormatter,
    SecretRedactingFilter,
    log_with_context,
    setup_logging,
)


def _record(message, *args, **extra):
    record = logging.LogRecord(
        name="prompt_forge.storage.db",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=args,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestJSONFormatter:
    @freeze_time("2025-11-10 01:44:00")
    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(_record("Prompt %s saved", 7)))

        assert entry == {
            "timestamp": "2025-11-10T01:44:00Z",
            "level": "INFO",
            "component": "prompt_forge.storage.db",
            "message": "Prompt 7 saved",
        }

    def test_context_and_record_id(self):
        record = _record("Prompt saved", context={"version_number": 2}, record_id=7)

        entry = json.loads(JSONFormatter().format(record))

        assert entry["context"] == {"version_number": 2}
        assert entry["record_id"] == 7

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record("failed")
            record.exc_info = sys.exc_info()

        entry = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in entry["exception"]


class TestSecretRedactingFilter:
    def test_redacts_provider_keys_in_message(self):
        record = _record("key sk-proj-abcdefghijklmnopqrstuvwxyz1234 stored")

        SecretRedactingFilter().filter(record)

        assert record.getMessage() == "key sk-...1234 stored"

    def test_redacts_args_and_context(self):
        record = _record(
            "auth %s",
            "Bearer abcdefghijklmnopqrstuvwxyzWXYZ",
            context={"nested": {"key": "xai-abcdefghijklmnopqrstuvwxyz9999"}},
        )

        SecretRedactingFilter().filter(record)

        assert record.getMessage() == "auth Bearer ***WXYZ"
        assert record.context["nested"]["key"] == "xai-...9999"

    def test_leaves_unit_names_and_paths_alone(self):
        message = "Applying migration: 20251110_014402_fix_lineage_trigger.sql"
        record = _record(message)

        SecretRedactingFilter().filter(record)

        assert record.getMessage() == message


class TestSetupLogging:
    @pytest.mark.parametrize(
        "verbose, quiet_logs, expected",
        [
            (False, False, logging.INFO),
            (True, False, logging.DEBUG),
            (False, True, logging.WARNING),
            (True, True, logging.DEBUG),
        ],
    )
    def test_levels(self, restore_root_logger, verbose, quiet_logs, expected):
        setup_logging(verbose=verbose, quiet_logs=quiet_logs)

        root = logging.getLogger()
        assert root.level == expected
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_emits_json_to_stderr(self, restore_root_logger, capsys):
        setup_logging()

        log_with_context(
            logging.getLogger("prompt_forge.versioning.lineage"),
            logging.INFO,
            "Prompt saved",
            context={"change_kind": "initial"},
            record_id=1,
        )

        captured = capsys.readouterr()
        entry = json.loads(captured.err.strip().splitlines()[-1])
        assert captured.out == ""
        assert entry["message"] == "Prompt saved"
        assert entry["context"] == {"change_kind": "initial"}
        assert entry["record_id"] == 1
