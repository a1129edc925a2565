import cmd
from datetime import date
from typing import Optional

from billcal.balance import balance_at, balance_series, day_summary, month_balances, range_totals
from billcal.config import DEFAULT_SAVE_NAME
from billcal.dates import format_display_date, format_key, month_bounds, parse_key
from billcal.export import write_csv
from billcal.importer import commit_drafts, read_csv
from billcal.ledger import Ledger, sorted_rules
from billcal.models import (
    BillCalError, CATEGORY_EMOJI, Category, RECURRENCE_LABELS, RecurrenceKind, SnapshotError,
)
from billcal.recurrence import next_occurrence
from billcal.storage import import_json, export_json, list_save_files, load_ledger, save_ledger


class BillCalendarCLI(cmd.Cmd):
    prompt = "(billcal) "

    def __init__(self, ledger: Optional[Ledger] = None, save_name: str = DEFAULT_SAVE_NAME,
                 saves_dir=None, autosave: bool = True, stdin=None, stdout=None):
        super().__init__(stdin=stdin, stdout=stdout)
        if stdin is not None:
            self.use_rawinput = False
        self.intro = "Welcome to Bill Calendar. Type 'help' for commands."
        self.ledger = ledger if ledger is not None else Ledger()
        self.save_name = save_name
        self.saves_dir = saves_dir
        self.autosave = autosave

    def _print(self, text: str = ""):
        self.stdout.write(text + "\n")

    def _ask(self, question: str) -> str:
        self.stdout.write(question)
        self.stdout.flush()
        line = self.stdin.readline() if not self.use_rawinput else input()
        return line.strip()

    def _confirm(self, question: str) -> bool:
        return self._ask(f"{question} [y/N] ").lower() in ("y", "yes")

    def _money(self, amount: float) -> str:
        symbol = self.ledger.settings.get("currency_symbol", "$")
        sign = "-" if amount < 0 else ""
        return f"{sign}{symbol}{abs(amount):,.2f}"

    def _persist(self):
        if self.autosave:
            save_ledger(self.ledger, self.save_name, self.saves_dir)

    # ===== CORE COMMANDS =====
    def do_add(self, arg):
        """Add a transaction: add <amount> <income|expense> [YYYY-MM-DD] [--recur <kind>] [--until YYYY-MM-DD] [--category NAME] --name <text>"""
        try:
            args = self._parse_add_args(arg)
        except ValueError as e:
            self._print(f"Invalid input: {e}")
            return

        outcome = self.ledger.add(**args)
        if not outcome:
            self._print(f"Invalid input: {outcome.message}")
            return
        self._persist()

        rule = outcome.rule
        confirmation = f"✓ Added {rule.name} ({self._money(rule.amount)}) with id {rule.id}"
        if rule.is_recurring:
            confirmation += f" (recurring {RECURRENCE_LABELS[rule.kind].lower()})"
        self._print(confirmation)

    def do_edit(self, arg):
        """Edit a transaction: edit <ID> [--amount X] [--date YYYY-MM-DD] [--recur <kind>] [--until YYYY-MM-DD|none] [--category NAME] [--name <text>]"""
        args = arg.split()
        if not args or not args[0].isdigit():
            self._print("Usage: edit <ID> [--amount X] [--date D] [--recur KIND] [--until D] [--category C] [--name TEXT]")
            return
        try:
            changes = self._parse_edit_args(args[1:])
        except ValueError as e:
            self._print(f"Invalid input: {e}")
            return

        outcome = self.ledger.edit(int(args[0]), **changes)
        if not outcome:
            self._print(outcome.message)
            return
        self._persist()
        self._print(f"✓ Updated {outcome.rule.name} (new id {outcome.rule.id})")

    def do_delete(self, arg):
        """Delete a transaction and all of its occurrences: delete <ID>"""
        args = arg.split()
        if not args or not args[0].isdigit():
            self._print("Usage: delete <ID>")
            return

        rule = self.ledger.get(int(args[0]))
        if rule is None:
            self._print("Transaction not found")
            return
        if rule.is_recurring and not self._confirm(
                f'"{rule.name}" is a recurring transaction. Delete ALL occurrences?'):
            return

        outcome = self.ledger.remove(rule.id)
        self._persist()
        self._print(f"✓ {outcome.message}")

    def do_setbal(self, arg):
        """Set the initial balance: setbal <amount> [YYYY-MM-DD]"""
        args = arg.split()
        if not args:
            self._print(f"Initial balance: {self._money(self.ledger.initial_balance)}"
                        f" as of {self.ledger.initial_balance_date or 'not set'}")
            return
        try:
            anchor = parse_key(args[1]) if len(args) > 1 else None
        except ValueError as e:
            self._print(f"Invalid input: {e}")
            return

        outcome = self.ledger.set_initial_balance(args[0], anchor)
        if not outcome:
            self._print(f"Invalid input: {outcome.message}")
            return
        self._persist()
        self._print(f"✓ Initial balance {self._money(self.ledger.initial_balance)}"
                    f" as of {self.ledger.initial_balance_date}")

    # ===== VIEWS =====
    def do_balance(self, arg):
        """Show the balance at the end of a day: balance [YYYY-MM-DD]"""
        try:
            target_date = self._parse_date_args(arg)['date']
        except ValueError as e:
            self._print(f"Invalid input: {e}")
            return

        balance = balance_at(self.ledger, target_date)
        self._print(f"\nBalance on {format_display_date(target_date)}:")
        self._print(f"  {self._money(balance)}")

        if target_date > date.today():
            self._print("\nNote: Future projection (includes scheduled recurring transactions)")

    def do_day(self, arg):
        """Show transactions and totals for a day: day [YYYY-MM-DD]"""
        try:
            target_date = self._parse_date_args(arg)['date']
        except ValueError as e:
            self._print(f"Invalid input: {e}")
            return

        summary = day_summary(self.ledger, target_date)
        self._print(f"\n{' ' + format_display_date(target_date) + ' ':-^50}")
        if not summary.rules:
            self._print("No transactions on this day.")
        for rule in summary.rules:
            self._print(self._rule_line(rule, target_date))
        self._print(f"\n  Income:   {self._money(summary.income)}")
        self._print(f"  Expenses: {self._money(-summary.expenses)}")
        self._print(f"  Net:      {self._money(summary.net)}")
        self._print(f"  Balance:  {self._money(balance_at(self.ledger, target_date))}")

    def do_month(self, arg):
        """Show the calendar balance for every day of a month: month [YYYY-MM]"""
        try:
            year, month = self._parse_month_arg(arg)
        except ValueError as e:
            self._print(f"Invalid input: {e}")
            return

        first, _ = month_bounds(year, month)
        balances = month_balances(self.ledger, year, month)
        self._print(f"\n{' ' + first.strftime('%B %Y') + ' ':-^50}")
        for day, balance in balances.items():
            d = first.replace(day=day)
            marks = "".join(CATEGORY_EMOJI[r.category] for r in self.ledger.rules_on(d))
            self._print(f"  {day:>2} {d.strftime('%a')}  {self._money(balance):>14}  {marks}")

    def do_range(self, arg):
        """Show daily balances and totals over a range: range <YYYY-MM-DD> <YYYY-MM-DD>"""
        args = arg.split()
        try:
            if len(args) != 2:
                raise ValueError("Two dates are required")
            start, end = parse_key(args[0]), parse_key(args[1])
        except ValueError as e:
            self._print(f"Invalid input: {e}")
            return

        previous = None
        for point in balance_series(self.ledger, start, end):
            delta = "" if previous is None else f"{point.balance - previous:+,.2f}"
            previous = point.balance
            self._print(f"  {format_key(point.date)}  {self._money(point.balance):>14}  {delta}")

        totals = range_totals(self.ledger, start, end)
        self._print(f"\nTotals:")
        self._print(f"  Income:   {self._money(totals['income'])}")
        self._print(f"  Expenses: {self._money(-totals['expense'])}")
        self._print(f"  Net:      {self._money(totals['net'])}")

    def do_rules(self, arg):
        """List every transaction rule: rules"""
        rules = sorted_rules(self.ledger.all_rules())
        if not rules:
            self._print("No transactions defined")
            return
        today = date.today()
        for rule in rules:
            line = self._rule_line(rule)
            upcoming = next_occurrence(rule, today - date.resolution)
            if upcoming is not None and rule.is_recurring:
                line += f" • Next {format_display_date(upcoming)}"
            self._print(line)

    def _rule_line(self, rule, shown_on: Optional[date] = None) -> str:
        line = f"  [{rule.id}] {CATEGORY_EMOJI[rule.category]} {rule.name}  {self._money(rule.amount)}"
        if rule.is_recurring:
            line += f"  ({RECURRENCE_LABELS[rule.kind]})"
        if shown_on is None or rule.anchor_date != shown_on:
            line += f" • Started {format_display_date(rule.anchor_date)}"
        if rule.end_date:
            line += f" • Ends {format_display_date(rule.end_date)}"
        return line

    # ===== IMPORT / EXPORT =====
    def do_import(self, arg):
        """Import transactions from a bank CSV: import <path>"""
        path = arg.strip()
        if not path:
            self._print("Usage: import <path>")
            return
        try:
            drafts = read_csv(path)
        except (OSError, BillCalError) as e:
            self._print(f"Import failed: {e}")
            return

        for i, draft in enumerate(drafts, 1):
            self._print(f"  {i:>3}. {format_key(draft.anchor_date)}  {draft.name:<40} {self._money(draft.amount):>12}")

        skip = self._ask("Numbers to skip (comma separated, blank for none): ")
        for token in filter(None, (t.strip() for t in skip.split(","))):
            if token.isdigit() and 1 <= int(token) <= len(drafts):
                drafts[int(token) - 1].selected = False

        chosen = sum(1 for d in drafts if d.selected)
        if not chosen or not self._confirm(f"Import {chosen} transactions?"):
            self._print("Import cancelled")
            return

        outcome = commit_drafts(self.ledger, drafts)
        if outcome:
            self._persist()
        self._print(("✓ " if outcome else "") + outcome.message)

    def do_export(self, arg):
        """Export occurrences and running balances to CSV: export <YYYY-MM-DD> <YYYY-MM-DD> <path>"""
        args = arg.split()
        if len(args) != 3:
            self._print("Usage: export <start> <end> <path>")
            return
        try:
            count = write_csv(self.ledger, parse_key(args[0]), parse_key(args[1]), args[2])
        except (OSError, ValueError) as e:
            self._print(f"Export failed: {e}")
            return
        self._print(f"✓ Exported {count} rows to {args[2]}")

    def do_backup(self, arg):
        """Write the whole ledger to a JSON file: backup <path>"""
        path = arg.strip() or f"billcal-{format_key(date.today())}.json"
        try:
            export_json(self.ledger, path)
        except OSError as e:
            self._print(f"Backup failed: {e}")
            return
        self._print(f"✓ Data exported to {path}")

    def do_restore(self, arg):
        """Replace all data with a JSON backup: restore <path>"""
        path = arg.strip()
        if not path:
            self._print("Usage: restore <path>")
            return
        try:
            restored = import_json(path)
        except SnapshotError as e:
            self._print(f"Error importing data: {e}")
            return
        if not self._confirm("This will replace all current data. Continue?"):
            return

        self.ledger.replace_all(restored.all_rules(), restored.initial_balance,
                                restored.initial_balance_date, restored.settings)
        self._persist()
        self._print(f"✓ Data imported successfully ({len(self.ledger)} transactions)")

    # ===== DATA MANAGEMENT =====
    def do_save(self, arg):
        """Save current data: save [name=default]"""
        self.save_name = arg.strip() or self.save_name
        save_ledger(self.ledger, self.save_name, self.saves_dir)
        self._print(f"✓ Saved as '{self.save_name}'")

    def do_load(self, arg):
        """Load saved data: load [name]"""
        saves = list_save_files(self.saves_dir)
        if not saves:
            self._print("No save files available")
            return

        if not arg:
            self._print("Available saves:")
            for i, name in enumerate(saves, 1):
                self._print(f"{i}. {name}")
            try:
                name = saves[int(self._ask("Select save: ")) - 1]
            except (ValueError, IndexError):
                self._print("Invalid selection")
                return
        else:
            name = arg.strip()

        self.ledger = load_ledger(name, self.saves_dir)
        self.save_name = name
        self._print(f"✓ Loaded {len(self.ledger)} transactions from '{name}'")

    def do_reset(self, arg):
        """Delete ALL data: reset"""
        if not self._confirm("Are you sure you want to delete ALL data? This cannot be undone."):
            return
        self.ledger.reset()
        self._persist()
        self._print("All data cleared")

    # ===== UTILITIES =====
    def do_exit(self, arg):
        """Exit the program"""
        self._print("Goodbye!")
        return True

    do_EOF = do_exit

    # ===== HELPERS =====
    @staticmethod
    def _parse_add_args(arg):
        """Parse add command arguments into Ledger.add keywords"""
        args = arg.split()
        if len(args) < 2:
            raise ValueError("Missing required arguments (amount and type)")

        try:
            amount = abs(float(args[0]))
        except ValueError:
            raise ValueError(f"Amount must be a number: {args[0]}")
        t_type = args[1].lower()
        if t_type not in ('income', 'expense'):
            raise ValueError("Type must be 'income' or 'expense'")

        result = {
            'name': "",
            'amount': amount if t_type == 'income' else -amount,
            'kind': RecurrenceKind.ONE_TIME,
            'anchor_date': date.today(),
            'end_date': None,
            'category': Category.OTHER,
        }

        i = 2
        while i < len(args):
            if args[i] == '--name':
                result['name'] = ' '.join(args[i+1:])
                break
            elif args[i] in ('--recur', '--until', '--category'):
                if i+1 >= len(args):
                    raise ValueError(f"Missing value after {args[i]}")
                value = args[i+1]
                if args[i] == '--recur':
                    result['kind'] = RecurrenceKind.parse(value)
                elif args[i] == '--until':
                    result['end_date'] = parse_key(value)
                else:
                    result['category'] = Category.parse(value)
                i += 2
            elif args[i].startswith('--'):
                raise ValueError(f"Unknown flag: {args[i]}")
            else:
                result['anchor_date'] = parse_key(args[i])
                i += 1

        return result

    @staticmethod
    def _parse_edit_args(args):
        changes = {}
        i = 0
        while i < len(args):
            flag = args[i]
            if flag == '--name':
                changes['name'] = ' '.join(args[i+1:])
                break
            if i+1 >= len(args):
                raise ValueError(f"Missing value after {flag}")
            value = args[i+1]
            if flag == '--amount':
                changes['amount'] = float(value)
            elif flag == '--date':
                changes['anchor_date'] = parse_key(value)
            elif flag == '--recur':
                changes['kind'] = RecurrenceKind.parse(value)
            elif flag == '--until':
                changes['end_date'] = None if value.lower() == 'none' else parse_key(value)
            elif flag == '--category':
                changes['category'] = Category.parse(value)
            else:
                raise ValueError(f"Unknown flag: {flag}")
            i += 2
        return changes

    @staticmethod
    def _parse_date_args(arg):
        """Parse an optional YYYY-MM-DD argument, defaulting to today"""
        args = arg.split()
        result = {'date': date.today()}
        if args:
            result['date'] = parse_key(args[0])
        return result

    @staticmethod
    def _parse_month_arg(arg):
        text = arg.strip()
        if not text:
            today = date.today()
            return today.year, today.month
        parts = text.split("-")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError("Month must be in YYYY-MM format")
        year, month = int(parts[0]), int(parts[1])
        if not 1 <= month <= 12:
            raise ValueError("Month must be between 01 and 12")
        if not date.min.year <= year <= date.max.year:
            raise ValueError(f"Year must be between {date.min.year} and {date.max.year}")
        return year, month
