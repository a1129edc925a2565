import csv
import io
import json
import tempfile
import unittest
from datetime import date
from pathlib import Path

from billcal.balance import balance_at
from billcal.cli import BillCalendarCLI
from billcal.export import CSV_COLUMNS, export_rows, write_csv
from billcal.importer import (
    ColumnMap, commit_drafts, detect_columns, edit_draft, parse_amount, parse_csv_text, read_csv,
    reconcile_rows, select_all
)
from billcal.ledger import Ledger
from billcal.models import Category, DraftImportRule, ImportFailed, RecurrenceKind, SnapshotError
from billcal.storage import (
    SNAPSHOT_VERSION, export_json, from_snapshot, import_json, list_save_files, load_ledger, migrate,
    save_ledger, to_snapshot
)


COLUMNS = ColumnMap(description="Description", date="Date", amount="Amount", balance="Balance")


class TestImportReconciliation(unittest.TestCase):
    def test_parse_amount(self):
        self.assertEqual(parse_amount("$1,234.56"), 1234.56)
        self.assertEqual(parse_amount("-20.00"), -20.0)
        self.assertEqual(parse_amount("(45.10)"), -45.10)
        self.assertEqual(parse_amount(" 7 "), 7.0)
        self.assertIsNone(parse_amount("0.00"))
        self.assertIsNone(parse_amount("n/a"))
        self.assertIsNone(parse_amount(""))
        self.assertIsNone(parse_amount(None))

    def test_balance_delta_sets_sign(self):
        """A balance going 100 -> 80 makes the row between them an expense"""
        rows = [
            {"Description": "Opening", "Date": "01/01/2024", "Amount": "100.00", "Balance": "100.00"},
            {"Description": "Grocery Store", "Date": "01/02/2024", "Amount": "20.00", "Balance": "80.00"},
            {"Description": "Refund", "Date": "01/03/2024", "Amount": "15.00", "Balance": "95.00"},
        ]
        drafts = reconcile_rows(rows, COLUMNS)
        self.assertEqual([d.amount for d in drafts], [-100.0, -20.0, 15.0])
        self.assertEqual(drafts[1].name, "Grocery Store")
        self.assertEqual(drafts[1].anchor_date, date(2024, 1, 2))

    def test_defaults_to_expense_without_balance(self):
        columns = ColumnMap(description="Description", date="Date", amount="Amount")
        rows = [{"Description": "Paycheck", "Date": "02/01/24", "Amount": "500"}]
        drafts = reconcile_rows(rows, columns)
        self.assertEqual(drafts[0].amount, -500.0)
        self.assertEqual(drafts[0].anchor_date, date(2024, 2, 1))

    def test_description_forces_expense(self):
        rows = [
            {"Description": "Start", "Date": "01/01/2024", "Amount": "10", "Balance": "10"},
            {"Description": "ATM WITHDRAWAL 123", "Date": "01/02/2024", "Amount": "40", "Balance": "50"},
            {"Description": "Debit Card Purchase - Cafe", "Date": "01/03/2024", "Amount": "5", "Balance": "55"},
        ]
        drafts = reconcile_rows(rows, COLUMNS)
        self.assertEqual(drafts[1].amount, -40.0)
        self.assertEqual(drafts[2].amount, -5.0)

    def test_bad_rows_are_skipped(self):
        rows = [
            {"Description": "No amount", "Date": "01/01/2024", "Amount": "", "Balance": "100"},
            {"Description": "Zero", "Date": "01/01/2024", "Amount": "0", "Balance": "100"},
            {"Description": "Bad date", "Date": "someday", "Amount": "5", "Balance": "95"},
            {"Description": "Good", "Date": "01/04/2024", "Amount": "5", "Balance": "90"},
        ]
        drafts = reconcile_rows(rows, COLUMNS)
        self.assertEqual(len(drafts), 1)
        self.assertEqual(drafts[0].name, "Good")
        # no earlier balance was captured from the skipped rows
        self.assertEqual(drafts[0].amount, -5.0)

    def test_drafts_are_one_time_selected_other(self):
        drafts = reconcile_rows([{"Description": "", "Date": "01/01/2024", "Amount": "5"}],
                                ColumnMap(description="Description", date="Date", amount="Amount"))
        draft = drafts[0]
        self.assertEqual(draft.kind, RecurrenceKind.ONE_TIME)
        self.assertEqual(draft.category, Category.OTHER)
        self.assertTrue(draft.selected)
        self.assertEqual(draft.name, "Imported transaction")

    def test_detect_columns(self):
        columns = detect_columns(["Posted Date", "Description", "Amount", "Running Balance"])
        self.assertEqual(columns.date, "Posted Date")
        self.assertEqual(columns.description, "Description")
        self.assertEqual(columns.amount, "Amount")
        self.assertEqual(columns.balance, "Running Balance")

        self.assertIsNone(detect_columns(["Date", "Memo", "Amount"]).balance)
        with self.assertRaises(ImportFailed):
            detect_columns(["Date", "Memo"])

    def test_header_is_claimed_once(self):
        """A "Transaction Date" header is the date column, never also the description"""
        with self.assertRaises(ImportFailed) as ctx:
            detect_columns(["Transaction Date", "Amount", "Balance"])
        self.assertIn("description", str(ctx.exception))

        columns = detect_columns(["Transaction Date", "Payee", "Amount"])
        self.assertEqual(columns.date, "Transaction Date")
        self.assertEqual(columns.description, "Payee")

    def test_parse_csv_text(self):
        text = (
            "Date,Description,Amount,Balance\n"
            "01/01/2024,Opening,\"1,000.00\",\"1,000.00\"\n"
            "01/02/2024,Grocery Store,20.00,980.00\n"
            "\n"
            "01/03/2024,Salary,500.00,\"1,480.00\"\n"
        )
        drafts = parse_csv_text(text)
        self.assertEqual([d.amount for d in drafts], [-1000.0, -20.0, 500.0])

    def test_tab_separated(self):
        text = "Date\tDescription\tAmount\n03/01/2024\tBus\t2.75\n"
        drafts = parse_csv_text(text)
        self.assertEqual(drafts[0].name, "Bus")
        self.assertEqual(drafts[0].amount, -2.75)

    def test_no_valid_rows_fails(self):
        with self.assertRaises(ImportFailed):
            parse_csv_text("Date,Description,Amount\nbad,Thing,abc\n")
        with self.assertRaises(ImportFailed):
            parse_csv_text("")

    def test_read_csv_from_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "bank.csv"
            path.write_text("﻿Date,Description,Amount\n01/05/2024,Fuel,30\n", encoding="utf-8")
            drafts = read_csv(path)
        self.assertEqual(len(drafts), 1)
        self.assertEqual(drafts[0].anchor_date, date(2024, 1, 5))

    def test_edit_and_select(self):
        draft = DraftImportRule(name="x", amount=-1.0, anchor_date=date(2024, 1, 1))
        edit_draft(draft, name="Gym", amount=-30, kind="monthly", category="health", anchor_date="2024-02-01")
        self.assertEqual(draft.name, "Gym")
        self.assertEqual(draft.kind, RecurrenceKind.MONTHLY)
        self.assertEqual(draft.category, Category.HEALTH)
        self.assertEqual(draft.anchor_date, date(2024, 2, 1))
        with self.assertRaises(ValueError):
            edit_draft(draft, amount=0)
        with self.assertRaises(ValueError):
            edit_draft(draft, kind="hourly")

        drafts = [draft, DraftImportRule(name="y", amount=2.0, anchor_date=date(2024, 1, 1))]
        select_all(drafts, False)
        self.assertFalse(any(d.selected for d in drafts))

    def test_failed_edit_leaves_draft_untouched(self):
        draft = DraftImportRule(name="Coffee", amount=-4.5, anchor_date=date(2024, 1, 1))
        with self.assertRaises(ValueError):
            edit_draft(draft, name="Renamed", amount="abc")
        for bad in ("nan", "inf", float("-inf")):
            with self.assertRaises(ValueError):
                edit_draft(draft, name="Renamed", amount=bad)
        with self.assertRaises(ValueError):
            edit_draft(draft, name="Renamed", colour="red")
        self.assertEqual(draft.name, "Coffee")
        self.assertEqual(draft.amount, -4.5)

    def test_commit_appends_selected_only(self):
        ledger = Ledger()
        drafts = [
            DraftImportRule(name="Keep", amount=-10.0, anchor_date=date(2024, 1, 1)),
            DraftImportRule(name="Skip", amount=-5.0, anchor_date=date(2024, 1, 1), selected=False),
        ]
        outcome = commit_drafts(ledger, drafts)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.count, 1)
        self.assertEqual([r.name for r in ledger.all_rules()], ["Keep"])

    def test_reimport_creates_new_rules(self):
        """Committing the same drafts twice gives two distinct rules"""
        ledger = Ledger()
        drafts = [DraftImportRule(name="Coffee", amount=-4.0, anchor_date=date(2024, 1, 1))]
        commit_drafts(ledger, drafts)
        commit_drafts(ledger, drafts)
        rules = ledger.all_rules()
        self.assertEqual(len(rules), 2)
        self.assertNotEqual(rules[0].id, rules[1].id)

    def test_invalid_draft_blocks_commit(self):
        ledger = Ledger()
        drafts = [
            DraftImportRule(name="Fine", amount=-1.0, anchor_date=date(2024, 1, 1)),
            DraftImportRule(name="", amount=-1.0, anchor_date=date(2024, 1, 1)),
        ]
        self.assertFalse(commit_drafts(ledger, drafts).ok)
        self.assertEqual(len(ledger), 0)


class TestExport(unittest.TestCase):
    def setUp(self):
        self.ledger = Ledger(initial_balance=100, initial_balance_date=date(2024, 1, 1))
        self.ledger.add("Pay", 50, "weekly", date(2024, 1, 1), category="salary")
        self.ledger.add("Snack", -5, "daily", date(2024, 1, 1), category="food")

    def test_one_row_per_occurrence(self):
        rows = export_rows(self.ledger, date(2024, 1, 1), date(2024, 1, 3))
        self.assertEqual(len(rows), 4)
        first = rows[0]
        self.assertEqual(first["Date"], "2024-01-01")
        self.assertEqual(first["Description"], "Pay")
        self.assertEqual(first["Category"], "salary")
        self.assertEqual(first["Recurrence"], "Weekly")
        self.assertEqual(first["Income"], 50)
        self.assertEqual(first["Expense"], 0)
        self.assertEqual(first["Running Balance"], 145)
        self.assertEqual(first["Balance Delta"], 45)
        self.assertEqual(rows[-1]["Running Balance"], 135)
        self.assertEqual(rows[-1]["Balance Delta"], -5)

    def test_no_rows_before_anchor(self):
        """A charge dated before the balance anchor is not replayed, so it is not exported"""
        ledger = Ledger(initial_balance=200, initial_balance_date=date(2024, 1, 10))
        ledger.add("Old bill", -50, "one-time", date(2024, 1, 5))
        ledger.add("Gift", 20, "one-time", date(2024, 1, 12))
        rows = export_rows(ledger, date(2024, 1, 1), date(2024, 1, 15))
        self.assertEqual([r["Description"] for r in rows], ["Gift"])
        self.assertEqual(rows[0]["Running Balance"], 220)
        self.assertEqual(rows[0]["Balance Delta"], 20)

    def test_write_csv(self):
        buf = io.StringIO()
        count = write_csv(self.ledger, date(2024, 1, 2), date(2024, 1, 2), buf)
        self.assertEqual(count, 1)
        rows = list(csv.DictReader(io.StringIO(buf.getvalue())))
        self.assertEqual(list(rows[0].keys()), CSV_COLUMNS)
        self.assertEqual(rows[0]["Expense"], "5.00")
        self.assertEqual(rows[0]["Running Balance"], "140.00")


class TestStorage(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.saves = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def _sample(self):
        ledger = Ledger(initial_balance=1000, initial_balance_date=date(2024, 1, 1))
        ledger.add("Rent", -1200, "monthly", date(2024, 1, 31), category="rent")
        ledger.add("Gym", -30, "monthly", date(2024, 1, 5), end_date=date(2024, 6, 30), category="health")
        return ledger

    def test_snapshot_shape(self):
        snapshot = to_snapshot(self._sample())
        self.assertEqual(snapshot["version"], SNAPSHOT_VERSION)
        self.assertEqual(snapshot["initialBalance"], 1000)
        self.assertEqual(snapshot["initialBalanceDate"], "2024-01-01")
        self.assertEqual(snapshot["bills"][0]["type"], "monthly")
        self.assertEqual(snapshot["bills"][1]["endDate"], "2024-06-30")
        self.assertIn("currency_symbol", snapshot["settings"])

    def test_save_and_load(self):
        original = self._sample()
        save_ledger(original, "test_save", self.saves)
        loaded = load_ledger("test_save", self.saves)

        self.assertEqual(loaded.all_rules(), original.all_rules())
        self.assertEqual(loaded.initial_balance, 1000)
        self.assertEqual(loaded.initial_balance_date, date(2024, 1, 1))
        self.assertEqual(balance_at(loaded, date(2024, 2, 29)), balance_at(original, date(2024, 2, 29)))

    def test_list_save_files(self):
        save_ledger(Ledger(), "test_save1", self.saves)
        save_ledger(Ledger(), "test_save2", self.saves)
        self.assertEqual(list_save_files(self.saves), ["test_save1", "test_save2"])
        self.assertEqual(list_save_files(self.saves / "missing"), [])

    def test_missing_save_is_empty(self):
        ledger = load_ledger("nothing_here", self.saves)
        self.assertEqual(len(ledger), 0)
        self.assertEqual(ledger.initial_balance, 0)

    def test_corrupt_save_falls_back_to_empty(self):
        (self.saves / "broken.json").write_text("{not json", encoding="utf-8")
        self.assertEqual(len(load_ledger("broken", self.saves)), 0)

        bad_bill = {"bills": [{"id": 1, "name": "x", "amount": 0, "type": "monthly", "date": "2024-01-01"}]}
        (self.saves / "zero.json").write_text(json.dumps(bad_bill), encoding="utf-8")
        self.assertEqual(len(load_ledger("zero", self.saves)), 0)

    def test_migrate_fills_defaults(self):
        """Version-less snapshots from the first release still load"""
        old = {
            "initialBalance": 250,
            "bills": [
                {"id": 1700000000000, "name": "Netflix", "amount": -15.99, "type": "monthly", "date": "2024-01-10"},
                {"name": "Lunch", "amount": -12, "type": "one-time", "date": "2024-01-11"},
            ],
        }
        migrated = migrate(old)
        self.assertEqual(migrated["version"], SNAPSHOT_VERSION)
        self.assertIsNone(migrated["initialBalanceDate"])
        self.assertEqual(migrated["bills"][0]["category"], "other")
        self.assertIsNone(migrated["bills"][0]["endDate"])
        self.assertEqual(migrated["bills"][1]["id"], 1700000000001)

        ledger = from_snapshot(old)
        self.assertEqual(len(ledger), 2)
        self.assertEqual(ledger.effective_anchor(), date(2024, 1, 10))

    def test_from_snapshot_rejects_garbage(self):
        for payload in ([], "text", {"bills": "nope"}, {"version": 99},
                        {"bills": [{"id": 1, "name": "x", "amount": -1, "type": "hourly", "date": "2024-01-01"}]}):
            with self.assertRaises(SnapshotError):
                from_snapshot(payload)

    def test_export_and_import_json(self):
        path = self.saves / "backup.json"
        export_json(self._sample(), path)
        restored = import_json(path)
        self.assertEqual(len(restored), 2)

        (self.saves / "junk.json").write_text("[1, 2", encoding="utf-8")
        with self.assertRaises(SnapshotError):
            import_json(self.saves / "junk.json")


class TestCLI(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.saves = Path(self._tmp.name)
        self.out = io.StringIO()

    def tearDown(self):
        self._tmp.cleanup()

    def _cli(self, answers=""):
        return BillCalendarCLI(save_name="test_cli", saves_dir=self.saves,
                               stdin=io.StringIO(answers), stdout=self.out)

    def test_add_and_balance(self):
        cli = self._cli()
        cli.onecmd("setbal 1000 2024-01-01")
        cli.onecmd("add 1200 expense 2024-01-31 --recur monthly --category rent --name Rent")
        self.assertEqual(len(cli.ledger), 1)
        rule = cli.ledger.all_rules()[0]
        self.assertEqual(rule.amount, -1200)
        self.assertEqual(rule.category, Category.RENT)

        cli.onecmd("balance 2024-02-29")
        self.assertIn("-$1,400.00", self.out.getvalue())
        self.assertEqual(len(load_ledger("test_cli", self.saves)), 1)

    def test_add_rejects_bad_input(self):
        cli = self._cli()
        cli.onecmd("add 0 expense --name Nothing")
        cli.onecmd("add 5 gift --name Thing")
        cli.onecmd("add 5 expense --recur hourly --name Thing")
        self.assertEqual(len(cli.ledger), 0)
        self.assertEqual(self.out.getvalue().count("Invalid input"), 3)

    def test_edit_and_delete(self):
        cli = self._cli(answers="y\n")
        cli.onecmd("add 30 expense 2024-01-05 --recur monthly --name Gym")
        old_id = cli.ledger.all_rules()[0].id
        cli.onecmd(f"edit {old_id} --amount -35")
        rule = cli.ledger.all_rules()[0]
        self.assertNotEqual(rule.id, old_id)
        self.assertEqual(rule.amount, -35)

        cli.onecmd(f"delete {rule.id}")
        self.assertEqual(len(cli.ledger), 0)
        cli.onecmd("delete 1")
        self.assertIn("Transaction not found", self.out.getvalue())

    def test_import_command(self):
        path = self.saves / "bank.csv"
        path.write_text(
            "Date,Description,Amount,Balance\n"
            "01/01/2024,Opening,100.00,100.00\n"
            "01/02/2024,Grocery Store,20.00,80.00\n",
            encoding="utf-8",
        )
        cli = self._cli(answers="1\ny\n")
        cli.onecmd(f"import {path}")
        rules = cli.ledger.all_rules()
        self.assertEqual(len(rules), 1)
        self.assertEqual(rules[0].amount, -20.0)

    def test_month_view(self):
        cli = self._cli()
        cli.ledger.add("Rent", -1200, "monthly", date(2024, 1, 31))
        cli.onecmd("month 2024-02")
        output = self.out.getvalue()
        self.assertIn("February 2024", output)
        self.assertIn("29 Thu", output)

    def test_month_rejects_out_of_range_year(self):
        cli = self._cli()
        cli.onecmd("month 0000-05")
        cli.onecmd("month 10000-01")
        self.assertEqual(self.out.getvalue().count("Invalid input"), 2)
        cli.onecmd("month 2024-02")
        self.assertIn("February 2024", self.out.getvalue())


if __name__ == "__main__":
    unittest.main()
