"""Tests for CLI commands.

These tests verify that all CLI commands are properly registered and callable.
"""

import json
from datetime import date

import pytest

from ledgermatch.runner.main import create_cli, main
from ledgermatch.schemas.documents import StorageLocation
from ledgermatch.state_store import SQLiteDocumentStore


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """Config file pointing the store into tmp_path."""
    monkeypatch.delenv("LEDGERMATCH_STORE_PATH", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(f"store_path: {tmp_path / 'ledger.db'}\nbook_id: acme\n")
    return path


def _write_csv(path, header, *rows):
    path.write_text("\n".join([",".join(header)] + [",".join(r) for r in rows]) + "\n")
    return path


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    def test_all_commands_registered(self):
        parser = create_cli()

        subparsers_action = None
        for action in parser._actions:
            if action.dest == "command":
                subparsers_action = action
                break

        assert subparsers_action is not None
        commands = set(subparsers_action.choices.keys())
        assert commands == {"init", "load", "match", "credit-notes", "prefetch-rates", "status"}

    def test_match_defaults(self):
        args = create_cli().parse_args(["match"])
        assert args.pair == "all"
        assert args.dry_run is False
        assert args.no_rates is False
        assert args.book is None

    def test_match_options(self):
        args = create_cli().parse_args(
            ["match", "--pair", "receipts", "--dry-run", "--no-rates", "--json", "--book", "b2"]
        )
        assert args.pair == "receipts"
        assert args.dry_run is True
        assert args.no_rates is True
        assert args.json is True
        assert args.book == "b2"

    def test_unknown_pair_rejected(self):
        with pytest.raises(SystemExit):
            create_cli().parse_args(["match", "--pair", "expenses"])

    def test_prefetch_dates_parsed(self):
        args = create_cli().parse_args(["prefetch-rates", "2024-01-01", "2024-01-02"])
        assert args.dates == [date(2024, 1, 1), date(2024, 1, 2)]

    def test_load_requires_sheet_and_kind(self):
        with pytest.raises(SystemExit):
            create_cli().parse_args(["load", "rows.csv"])


class TestCommands:
    """Tests for running commands through main()."""

    def test_no_command_prints_help(self):
        assert main([]) == 1

    def test_init_writes_config(self, tmp_path):
        path = tmp_path / "config.yaml"

        assert main(["-c", str(path), "init"]) == 0
        assert path.exists()
        assert main(["-c", str(path), "init"]) == 1
        assert main(["-c", str(path), "init", "--force"]) == 0

    def test_invalid_config_fails(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("cascade:\n  max_cascade_depth: 0\n")

        assert main(["-c", str(path), "status"]) == 1

    def test_load_missing_file(self, config_file, tmp_path):
        code = main(
            [
                "-c",
                str(config_file),
                "load",
                str(tmp_path / "none.csv"),
                "--sheet",
                "Recibos",
                "--kind",
                "receipt",
            ]
        )
        assert code == 1

    def test_status_empty_book(self, config_file, capsys):
        assert main(["-c", str(config_file), "status"]) == 0
        assert "No rows loaded" in capsys.readouterr().out

    def test_load_match_status(self, config_file, tmp_path, capsys):
        """Loaded rows are matched and written back to the configured book."""
        header = ["document_id", "counterparty_tax_id", "amount", "currency", "business_date"]
        invoices = _write_csv(
            tmp_path / "invoices.csv",
            header,
            ["F1", "20-12345678-6", "1210.00", "ARS", "2025-01-15"],
        )
        payments = _write_csv(
            tmp_path / "payments.csv",
            header,
            ["P1", "20123456786", "1210.00", "ARS", "2025-01-20"],
        )
        base = ["-c", str(config_file)]

        assert main(base + ["load", str(invoices), "--sheet", "Facturas Recibidas", "--kind", "invoice"]) == 0
        assert main(base + ["load", str(payments), "--sheet", "Pagos Enviados", "--kind", "payment"]) == 0
        capsys.readouterr()

        assert main(base + ["match", "--pair", "received-invoices", "--no-rates", "--json"]) == 0
        results = json.loads(capsys.readouterr().out)
        assert results[0]["pair"] == "received-invoices"
        assert results[0]["state"] == "COMPLETED"
        assert results[0]["matches_found"] == 1

        stats = SQLiteDocumentStore(tmp_path / "ledger.db").get_stats("acme")
        assert stats["Facturas Recibidas"] == {"total": 1, "matched": 1}
        assert stats["Pagos Enviados"] == {"total": 1, "matched": 1}

    def test_match_dry_run_writes_nothing(self, config_file, tmp_path):
        header = ["document_id", "amount", "business_date"]
        invoices = _write_csv(tmp_path / "i.csv", header, ["F1", "500", "2025-01-15"])
        payments = _write_csv(tmp_path / "p.csv", header, ["P1", "500", "2025-01-16"])
        base = ["-c", str(config_file)]
        main(base + ["load", str(invoices), "--sheet", "Facturas Emitidas", "--kind", "invoice"])
        main(base + ["load", str(payments), "--sheet", "Pagos Recibidos", "--kind", "payment"])

        assert main(base + ["match", "--no-rates", "--dry-run"]) == 0

        stats = SQLiteDocumentStore(tmp_path / "ledger.db").get_stats("acme")
        assert stats["Facturas Emitidas"]["matched"] == 0

    def test_credit_notes_mark_invoice_paid(self, config_file, tmp_path, capsys):
        header = ["document_id", "counterparty_tax_id", "amount", "business_date", "document_type", "concept"]
        invoices = _write_csv(
            tmp_path / "invoices.csv",
            header,
            ["F1", "20-12345678-6", "1210.00", "2025-01-15", "A", ""],
            ["NC1", "20-12345678-6", "1210.00", "2025-01-20", "NC", "Anulacion total"],
        )
        base = ["-c", str(config_file)]
        main(base + ["load", str(invoices), "--sheet", "Facturas Recibidas", "--kind", "invoice"])
        capsys.readouterr()

        assert main(base + ["credit-notes", "--json"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result["state"] == "COMPLETED"
        assert [(m["credit_note_id"], m["invoice_id"]) for m in result["matches"]] == [("NC1", "F1")]

        store = SQLiteDocumentStore(tmp_path / "ledger.db")
        assert {store.get_row(loc)["paid"] for loc in _invoice_locations(2, 3)} == {"YES"}

    def test_malformed_sheet_reported_without_traceback(self, config_file, tmp_path, capsys):
        """Payment rows in an invoice sheet fail the rate prefetch cleanly."""
        header = ["document_id", "amount", "business_date"]
        rows = _write_csv(tmp_path / "rows.csv", header, ["P1", "500", "2025-01-16"])
        base = ["-c", str(config_file)]
        main(base + ["load", str(rows), "--sheet", "Facturas Recibidas", "--kind", "payment"])
        capsys.readouterr()

        assert main(base + ["match", "--pair", "received-invoices"]) == 1
        assert "❌ Failed to read documents" in capsys.readouterr().out

        assert main(base + ["prefetch-rates"]) == 1
        assert "❌ Failed to read documents" in capsys.readouterr().out


def _invoice_locations(*rows):
    return [StorageLocation("Facturas Recibidas", row, "acme") for row in rows]
