from __future__ import annotations

from rich.console import Console
from typer.testing import CliRunner

from whisky_api import config
from whisky_api.domain.models import Whisky
from whisky_api.main import app
from whisky_api.reporter import build_whisky_table, print_whiskies

runner = CliRunner()


def test_info_hides_password(monkeypatch) -> None:
    monkeypatch.setenv("DB_PASSWORD", "s3cret")
    monkeypatch.setenv("HTTP_PORT", "9191")
    monkeypatch.setenv("APP_ENV", "staging")
    config.get_settings.cache_clear()
    try:
        result = runner.invoke(app, ["info"])
    finally:
        config.get_settings.cache_clear()

    assert result.exit_code == 0
    assert "s3cret" not in result.output
    assert ":9191" in result.output
    assert "env=staging" in result.output


def test_whisky_table_lists_every_record() -> None:
    whiskies = [
        Whisky(id=1, name="Bowmore 15 Years Laimrig", origin="Scotland, Islay"),
        Whisky(id=2, name="Talisker 57° North", origin="Scotland, Island"),
    ]

    table = build_whisky_table(whiskies)

    assert table.row_count == 2
    assert [column.header for column in table.columns] == ["Id", "Name", "Origin"]


def test_print_whiskies_reports_empty_collection() -> None:
    console = Console(record=True, width=80)

    print_whiskies([], console=console)

    assert "empty" in console.export_text()
