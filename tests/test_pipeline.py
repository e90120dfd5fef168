"""Tests for the report pipeline and CLI entry point."""
import pytest

from conftest import fleet_documents
from fare_recon.config import Settings
from fare_recon.pipeline import main, run_pipeline
from fare_recon.store import FileDocumentStore


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        store_dir=tmp_path / "store",
        report_dir=tmp_path / "reports",
        max_concurrency=4,
        timezone="UTC",
        default_capacity=27,
        log_level="INFO",
    )


@pytest.fixture
def file_store(settings) -> FileDocumentStore:
    store = FileDocumentStore(settings.store_dir)
    for path, data in fleet_documents().items():
        store.save_document(path, data)
    return store


@pytest.mark.asyncio
async def test_writes_markdown_report(settings, file_store, capsys) -> None:
    report_file = await run_pipeline(start="2024-03-01", end="2024-03-31", settings=settings)

    assert report_file == settings.report_dir / "report_2024-03-01_2024-03-31.md"
    text = report_file.read_text()
    assert "**Total Revenue:** PHP 375.00" in text
    assert "**Revenue Growth:** 275% vs 2024-01-30 to 2024-02-29" in text
    assert "| Regular/Conductor | PHP 295.00 | 79% | 3 | PHP 49.17 | 195% |" in text
    assert "| Batangas - Lipa | PHP 375.00 | 8 | 2 |" in text
    assert "- **Senior:** PHP 40.00 (11%, 1 passengers)" in text
    assert "- 8:00 AM - 9:00 AM: 3 tickets, 6 passengers (100%)" in text
    assert "| Juan Dela Cruz | BUS-01 | PHP 330.00 | 5 | 1 | PHP 66.00 | 5.00 |" in text
    assert "| 2024-03-10 | PHP 330.00 | PHP 250.00 | PHP 50.00 | PHP 30.00 | 5 |" in text
    assert "`malformed_record`" in text
    assert "Revenue: PHP 375.00 (+275%)" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_filtered_report(settings, file_store) -> None:
    report_file = await run_pipeline(
        start="2024-03-01", end="2024-03-31", category="preTicket", settings=settings
    )
    text = report_file.read_text()
    assert "**Ticket type:** preTicket" in text
    assert "**Total Revenue:** PHP 30.00" in text


@pytest.mark.asyncio
async def test_missing_store_dir(settings) -> None:
    assert await run_pipeline(settings=settings) is None


def test_cli_rejects_unknown_range(tmp_path, capsys) -> None:
    assert main(["--range", "last_fortnight", "--store", str(tmp_path)]) == 1
    assert "unknown time range" in capsys.readouterr().out


def test_cli_missing_store(tmp_path) -> None:
    assert main(["--store", str(tmp_path / "nowhere")]) == 1
