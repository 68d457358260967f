import os

import pytest

from coreresolver.cli import build_parser, main, serve


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert (args.config, args.address) == ("Corefile", "0.0.0.0:53")


def test_parser_accepts_options():
    args = build_parser().parse_args(["-c", "my.conf", "--address", "127.0.0.1:5300"])
    assert (args.config, args.address) == ("my.conf", "127.0.0.1:5300")


def test_parser_long_config_option():
    assert build_parser().parse_args(["--config", "other"]).config == "other"


@pytest.mark.asyncio
async def test_serve_fails_on_missing_config(tmp_path):
    with pytest.raises(OSError, match="Failed to read config file"):
        await serve(str(tmp_path / "absent"), "127.0.0.1:53")


def test_main_reports_missing_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    status = main(["--config", "absent-corefile"])
    assert status == 1
    log_text = (tmp_path / "logs" / "coredns.log").read_text(encoding="utf-8")
    assert "Failed to read config file 'absent-corefile'" in log_text


def test_main_logs_absolute_path_of_existing_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    target = tmp_path / "unreadable"
    target.mkdir()
    status = main(["--config", "unreadable"])
    assert status == 1
    log_text = (tmp_path / "logs" / "coredns.log").read_text(encoding="utf-8")
    assert os.path.realpath(str(target)) in log_text