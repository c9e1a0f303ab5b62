import json
from pathlib import Path

import pyotp
import pytest

from tap_attend import cli


@pytest.fixture
def kiosk_env(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    directory_file = tmp_path / "students.json"
    directory_file.write_text(
        json.dumps([{"studentId": "2021-0001", "name": "Alice Reyes", "rfid": "045A2E92"}]),
        encoding="utf-8",
    )
    monkeypatch.setenv("DIRECTORY_FILE", str(directory_file))
    monkeypatch.setenv("LEDGER_FILE", str(tmp_path / "attendance.jsonl"))
    for key in ("DIRECTORY_URL", "ADMIN_TOTP_SECRET", "SCANNER_MODE", "CARD_ID_MIN_LENGTH", "CARD_ID_MAX_LENGTH"):
        monkeypatch.delenv(key, raising=False)
    return tmp_path


def test_manual_command_records_check_in(kiosk_env: Path, capsys) -> None:
    assert cli.main(["manual", "045a2e92"]) == 0

    lines = (kiosk_env / "attendance.jsonl").read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[0])["method"] == "manual"
    assert "Welcome!" in capsys.readouterr().out


def test_manual_command_exit_code_reflects_rejection(kiosk_env: Path) -> None:
    assert cli.main(["manual", "045a2e92", "--mode", "check-out"]) == 1
    assert cli.main(["manual", "12"]) == 1


def test_status_command_prints_derived_status(kiosk_env: Path, capsys) -> None:
    cli.main(["manual", "045A2E92"])
    capsys.readouterr()

    assert cli.main(["status", "2021-0001"]) == 0
    assert "checked-in" in capsys.readouterr().out


def test_admin_commands_require_the_passcode(kiosk_env: Path, monkeypatch) -> None:
    secret = pyotp.random_base32()
    monkeypatch.setenv("ADMIN_TOTP_SECRET", secret)
    cli.main(["manual", "045A2E92"])

    monkeypatch.setattr(cli.Prompt, "ask", lambda *args, **kwargs: "not-a-code")
    assert cli.main(["history", "2021-0001"]) == 2

    monkeypatch.setattr(cli.Prompt, "ask", lambda *args, **kwargs: pyotp.TOTP(secret).now())
    assert cli.main(["history", "2021-0001"]) == 0
    assert cli.main(["refresh-directory"]) == 0


def test_bad_configuration_exits_with_error(kiosk_env: Path, monkeypatch) -> None:
    monkeypatch.setenv("CARD_ID_MIN_LENGTH", "32")

    assert cli.main(["manual", "045A2E92"]) == 2
