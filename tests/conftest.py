# Shared pytest fixtures
from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

from leadpitch.logging.init import LOGGER_NAME, reset_logging
from leadpitch.providers.sendgrid import SendResult


def _detach_package_logger() -> None:
    reset_logging()
    pkg = logging.getLogger(LOGGER_NAME)
    for handler in pkg.handlers[:]:
        pkg.removeHandler(handler)
    pkg.propagate = True
    pkg.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def isolated_logging():
    # setup_logging() disables propagation, which would hide records from caplog
    _detach_package_logger()
    yield
    _detach_package_logger()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """sender:
  from_email: team@example.com
  from_name: Example Team
  reply_to: replies@example.com
dispatch:
  batch_size: 10
  batch_delay_seconds: 0
  generation_delay_seconds: 0
quota:
  default_daily_limit: 5
storage:
  insert_page_size: 100
cleaning:
  remove_duplicates: false
  text_case: original
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "leadpitch.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def mock_mode(monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    monkeypatch.delenv("SENDGRID_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def leads_csv(temp_workdir: Path) -> Path:
    f = temp_workdir / "data" / "leads.csv"
    f.write_text(
        "Name,Email,City\n"
        "Alice, alice@example.com ,Dallas\n"
        "Bob,bob@example.com,Austin\n"
        ",,\n"
        "Carol,carol@example.com,Plano\n",
        encoding="utf-8",
    )
    return f


@pytest.fixture()
def make_xlsx(tmp_path: Path):
    """Write one or more sheets (name -> list of rows, first row = header) to .xlsx."""
    def _make(sheets: dict[str, list[list[Any]]], name: str = "book.xlsx") -> Path:
        path = tmp_path / name
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            for sheet, grid in sheets.items():
                pd.DataFrame(grid).to_excel(writer, sheet_name=sheet, header=False, index=False)
        return path
    return _make


class FakeSender:
    """Records send() calls; addresses in ``fail_for`` get a failed SendResult."""

    def __init__(self, fail_for: set[str] | None = None, key_valid: bool = True) -> None:
        self.fail_for = fail_for or set()
        self.key_valid = key_valid
        self.calls: list[dict[str, Any]] = []
        self.is_configured = True

    async def send(self, **kwargs: Any) -> SendResult:
        self.calls.append(kwargs)
        if kwargs["to"] in self.fail_for:
            return SendResult(success=False, error=f"rejected {kwargs['to']}")
        return SendResult(success=True, message_id=f"msg-{len(self.calls)}")

    async def validate_api_key(self) -> bool:
        return self.key_valid

    async def aclose(self) -> None:
        pass

    async def __aenter__(self) -> FakeSender:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        pass


class FakeGenerator:
    """Echoes the prompt upper-cased; prompts containing ``fail_marker`` raise."""

    def __init__(self, fail_marker: str | None = None) -> None:
        self.fail_marker = fail_marker
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail_marker and self.fail_marker in prompt:
            from leadpitch.errors import ProviderError
            raise ProviderError("Failed to generate pitch: boom")
        return prompt.upper()


@pytest.fixture()
def fake_sender() -> FakeSender:
    return FakeSender()


@pytest.fixture()
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture()
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def sender_factory():
    return FakeSender


@pytest.fixture()
def generator_factory():
    return FakeGenerator
