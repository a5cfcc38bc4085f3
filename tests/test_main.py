import io
import json

import pytest

import main
from gratbox.report import read_report
from gratbox.models import Result
from gratbox.targets import AUTOPILOT_ENDPOINT


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"tenant_id": "contoso.onmicrosoft.com", "client_id": "abc", "sync": {"report_dir": str(tmp_path)}}),
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture
def graph(mocker, caller):
    client = mocker.MagicMock()
    client.caller = caller
    client.get_page.side_effect = lambda url, params=None: {
        AUTOPILOT_ENDPOINT: (
            [
                {"id": "ap1", "serialNumber": "PF1ABC", "groupTag": "Old"},
                {"id": "ap2", "serialNumber": "PF9XYZ", "groupTag": "Kiosk"},
            ],
            None,
        )
    }[url]
    mocker.patch.object(main, "build_client", return_value=client)
    mocker.patch.object(main, "setup_logging")
    return client


@pytest.fixture
def serials(tmp_path):
    path = tmp_path / "serials.csv"
    path.write_text("SerialNumber\nPF1ABC\n", encoding="utf-8")
    return str(path)


def test_parser_sync_options():
    args = main.build_parser().parse_args(["sync-group", "Kiosk Devices", "--csv", "m.csv", "--mode", "SyncExact", "--yes"])

    assert args.command == "sync-group"
    assert args.group == "Kiosk Devices"
    assert args.mode == "SyncExact"
    assert args.yes is True
    assert args.dry_run is False


def test_parser_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        main.build_parser().parse_args(["sync-tags", "--csv", "s.csv", "--mode", "Mirror"])


def test_sync_tags_dry_run_writes_report(config_file, graph, serials, tmp_path, capsys):
    report = tmp_path / "report.csv"

    code = main.main(
        ["--config", config_file, "sync-tags", "--csv", serials, "--tag", "Kiosk", "--dry-run", "--report", str(report)]
    )

    assert code == main.EXIT_OK
    rows = read_report(str(report))
    assert [(r.key, r.operation, r.result) for r in rows] == [
        ("PF1ABC", "Update", Result.WOULD_APPLY),
        ("PF9XYZ", "NoOp", Result.SKIPPED),
    ]
    graph.post.assert_not_called()
    assert "DRY RUN" in capsys.readouterr().out


def test_sync_exact_without_confirmation_is_cancelled(config_file, graph, serials, monkeypatch):
    monkeypatch.setattr(main.sys, "stdin", io.StringIO(""))

    code = main.main(["--config", config_file, "sync-tags", "--csv", serials, "--tag", "Kiosk", "--mode", "SyncExact"])

    assert code == main.EXIT_ABORTED
    graph.post.assert_not_called()


def test_sync_exact_with_yes_applies(config_file, graph, serials, tmp_path):
    report = tmp_path / "report.csv"

    code = main.main(
        [
            "--config", config_file, "sync-tags", "--csv", serials, "--tag", "Kiosk",
            "--mode", "SyncExact", "--yes", "--report", str(report),
        ]
    )

    assert code == main.EXIT_OK
    assert [(r.key, r.operation, r.result) for r in read_report(str(report))] == [
        ("PF1ABC", "Update", Result.SUCCESS),
        ("PF9XYZ", "Remove", Result.SUCCESS),
    ]
    assert graph.post.call_count == 2


def test_errors_give_exit_code_one(config_file, graph, serials, tmp_path):
    from gratbox.errors import FatalError

    graph.post.side_effect = FatalError("Graph POST failed 403: Forbidden", status_code=403)

    code = main.main(["--config", config_file, "sync-tags", "--csv", serials, "--tag", "Kiosk"])

    assert code == main.EXIT_ERRORS


def test_missing_config(tmp_path, capsys):
    code = main.main(["--config", str(tmp_path / "nope.json"), "login"])

    assert code == main.EXIT_ERRORS
    assert "Configuration error" in capsys.readouterr().err


def test_bad_csv_is_reported(config_file, graph, tmp_path, capsys):
    empty = tmp_path / "empty.csv"
    empty.write_text("", encoding="utf-8")

    code = main.main(["--config", config_file, "sync-tags", "--csv", str(empty)])

    assert code == main.EXIT_ERRORS
    assert "ERROR" in capsys.readouterr().err
