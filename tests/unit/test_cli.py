from __future__ import annotations

import json

import pytest


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch, tmp_path):
    from apptrack.config import reset_settings
    from apptrack.utils.logging import reset_logging

    monkeypatch.chdir(tmp_path)
    for var in (
        "APPTRACK_OUTBOX_PATH",
        "APPTRACK_PROFILES_PATH",
        "APPTRACK_DB_PATH",
        "APPTRACK_LOG_FILE",
    ):
        monkeypatch.delenv(var, raising=False)
    reset_settings()
    yield
    reset_logging()


def _run(capsys, db, *args) -> tuple[int, str]:
    from apptrack.__main__ import main

    capsys.readouterr()
    code = main(["--db", str(db), *args])
    return code, capsys.readouterr().out


def test_cli_without_command_prints_help(capsys) -> None:
    from apptrack.__main__ import main

    assert main([]) == 0
    assert "usage: apptrack" in capsys.readouterr().out


def test_cli_email_set_and_get(capsys, tmp_path) -> None:
    db = tmp_path / "cli.db"

    code, out = _run(capsys, db, "--user", "alice", "email", "set", "Alice@Example.com")
    assert code == 0
    assert out.strip() == "alice@example.com"

    code, out = _run(capsys, db, "--user", "alice", "email", "get")
    assert code == 0
    assert out.strip() == "alice@example.com"


def test_cli_email_get_without_email_fails(capsys, tmp_path) -> None:
    code, out = _run(capsys, tmp_path / "cli.db", "email", "get")

    assert code == 1
    assert out.strip() == ""


def test_cli_invalid_email_errors_cleanly(capsys, tmp_path) -> None:
    from apptrack.__main__ import main

    code = main(["--db", str(tmp_path / "cli.db"), "email", "set", "nope"])

    assert code == 1
    assert "Error: Notification email looks invalid." in capsys.readouterr().err


def test_cli_schedule_lifecycle(capsys, tmp_path) -> None:
    db = tmp_path / "cli.db"

    code, out = _run(capsys, db, "jobs", "add", "--title", "Engineer", "--company", "Acme")
    assert code == 0
    job_id = json.loads(out)["id"]

    code, out = _run(
        capsys,
        db,
        "schedule",
        "create",
        job_id,
        "--at",
        "2999-01-01T09:00:00Z",
        "--email",
        "me@example.com",
    )
    assert code == 0
    schedule = json.loads(out)
    assert schedule["status"] == "scheduled"
    assert schedule["notification_email"] == "me@example.com"

    code, out = _run(capsys, db, "schedule", "list")
    assert code == 0
    listed = json.loads(out)
    assert [item["id"] for item in listed] == [schedule["id"]]
    assert listed[0]["job"]["title"] == "Engineer"

    code, out = _run(capsys, db, "schedule", "cancel", schedule["id"])
    assert code == 0
    assert json.loads(out)["status"] == "cancelled"

    code, _ = _run(capsys, db, "schedule", "cancel", schedule["id"])
    assert code == 1


def test_cli_import_is_idempotent(capsys, tmp_path) -> None:
    db = tmp_path / "cli.db"
    event_file = tmp_path / "event.json"
    event_file.write_text(
        json.dumps(
            {
                "jobTitle": "Engineer",
                "company": "Acme",
                "platform": "linkedin",
                "sourceType": "email",
                "appliedAt": "2024-01-10",
                "messageId": "msg-1",
            }
        ),
        encoding="utf-8",
    )

    code, out = _run(capsys, db, "import", str(event_file))
    assert code == 0
    first = json.loads(out)
    assert first["deduped"] is False
    assert first["created_job"] is True

    code, out = _run(capsys, db, "import", str(event_file))
    assert code == 0
    second = json.loads(out)
    assert second["deduped"] is True
    assert second["event_id"] == first["event_id"]

    code, out = _run(capsys, db, "platform-info", first["job_id"])
    assert code == 0
    assert json.loads(out)["platforms"][0]["platform"] == "linkedin"


def test_cli_bulk_import_reports_failures(capsys, tmp_path) -> None:
    events_file = tmp_path / "events.json"
    events_file.write_text(
        json.dumps([{"jobTitle": "Engineer", "company": "Acme"}, {"company": "Acme"}]),
        encoding="utf-8",
    )

    code, out = _run(capsys, tmp_path / "cli.db", "import", str(events_file))

    assert code == 1
    assert [item["ok"] for item in json.loads(out)] == [True, False]


def test_cli_missing_import_file_errors_cleanly(capsys, tmp_path) -> None:
    from apptrack.__main__ import main

    code = main(["--db", str(tmp_path / "cli.db"), "import", str(tmp_path / "nope.json")])

    assert code == 1
    assert "Error:" in capsys.readouterr().err


def test_cli_sweeps(capsys, tmp_path) -> None:
    db = tmp_path / "cli.db"

    code, out = _run(capsys, db, "sweep", "expired", "--batch-size", "10")
    assert code == 0
    assert json.loads(out)["processed"] == 0

    code, out = _run(capsys, db, "sweep", "reminders")
    assert code == 0
    assert json.loads(out) == {"schedules": 0, "sent": 0, "failed": 0}


def test_cli_log_file_records_the_run(capsys, tmp_path) -> None:
    log_file = tmp_path / "logs" / "apptrack.log"

    code, _ = _run(
        capsys,
        tmp_path / "cli.db",
        "--log-level",
        "DEBUG",
        "--log-file",
        str(log_file),
        "sweep",
        "expired",
    )

    assert code == 0
    assert "running sweep" in log_file.read_text(encoding="utf-8")
