import unittest
from datetime import date, datetime, timedelta

from billcal.balance import (
    balance_at, balance_series, day_summary, day_total, month_balances, range_totals, starting_balance
)
from billcal.dates import (
    add_months, canonicalize, days_between, days_in_month, format_display_date, format_key,
    iter_days, month_bounds, parse_import_date, parse_key
)
from billcal.ledger import Ledger, build_rule, sorted_rules
from billcal.models import (
    BalancePoint, Category, CATEGORY_EMOJI, RECURRENCE_LABELS, RecurrenceKind, TransactionRule
)
from billcal.recurrence import next_occurrence, occurrences_between, occurs_on


def make_rule(kind, anchor, amount=-100.0, end=None, rule_id=1, name="Bill"):
    return TransactionRule(
        id=rule_id,
        name=name,
        amount=amount,
        kind=RecurrenceKind(kind),
        anchor_date=anchor,
        end_date=end,
    )


class TestDates(unittest.TestCase):
    def test_round_trip(self):
        """Formatting then parsing a key gives back the same day"""
        for d in (date(2024, 1, 1), date(2024, 2, 29), date(1999, 12, 31), date(2030, 7, 4)):
            self.assertEqual(parse_key(format_key(d)), canonicalize(d))

    def test_round_trip_strips_time(self):
        """Datetimes are reduced to their calendar day"""
        moment = datetime(2024, 3, 10, 23, 59, 59)
        self.assertEqual(canonicalize(moment), date(2024, 3, 10))
        self.assertEqual(parse_key(format_key(moment)), date(2024, 3, 10))

    def test_format_key_zero_pads(self):
        self.assertEqual(format_key(date(2024, 1, 5)), "2024-01-05")

    def test_parse_key_rejects_other_formats(self):
        for bad in ("2024-1-5", "01/05/2024", "2024-13-01", "", "yesterday"):
            with self.assertRaises(ValueError):
                parse_key(bad)

    def test_days_between_is_signed(self):
        self.assertEqual(days_between(date(2024, 1, 1), date(2024, 3, 1)), 60)
        self.assertEqual(days_between(date(2024, 3, 1), date(2024, 1, 1)), -60)
        # spring DST change in many zones; day arithmetic ignores it
        self.assertEqual(days_between(date(2024, 3, 9), date(2024, 3, 11)), 2)

    def test_month_helpers(self):
        self.assertEqual(days_in_month(2024, 2), 29)
        self.assertEqual(days_in_month(2023, 2), 28)
        self.assertEqual(month_bounds(2024, 4), (date(2024, 4, 1), date(2024, 4, 30)))
        self.assertEqual(add_months(date(2024, 1, 31), 1), date(2024, 2, 29))
        self.assertEqual(len(list(iter_days(date(2024, 1, 30), date(2024, 2, 2)))), 4)

    def test_parse_import_date(self):
        """Bank dates: MM/DD/YYYY, two-digit years in the 2000s, then a loose fallback"""
        self.assertEqual(parse_import_date("03/15/2024"), date(2024, 3, 15))
        self.assertEqual(parse_import_date("3/5/24"), date(2024, 3, 5))
        self.assertEqual(parse_import_date("2024-03-15"), date(2024, 3, 15))
        self.assertEqual(parse_import_date("March 15, 2024"), date(2024, 3, 15))
        self.assertIsNone(parse_import_date("not a date"))
        self.assertIsNone(parse_import_date("13/45/2024"))
        self.assertIsNone(parse_import_date("1/2/3"))
        self.assertIsNone(parse_import_date("1/2/123"))
        self.assertIsNone(parse_import_date(""))

    def test_format_display_date(self):
        self.assertEqual(format_display_date(date(2024, 1, 5)), "Jan 5, 2024")


class TestRecurrence(unittest.TestCase):
    def test_one_time_exactness(self):
        """A one-time rule fires only on its anchor date"""
        anchor = date(2024, 5, 10)
        rule = make_rule("one-time", anchor)
        for offset in range(-5, 40):
            d = anchor + timedelta(days=offset)
            self.assertEqual(occurs_on(rule, d), d == anchor)

    def test_never_before_anchor(self):
        for kind in RecurrenceKind:
            rule = make_rule(kind.value, date(2024, 5, 10))
            self.assertFalse(occurs_on(rule, date(2024, 5, 9)))

    def test_daily(self):
        rule = make_rule("daily", date(2024, 1, 1))
        self.assertTrue(all(occurs_on(rule, d) for d in iter_days(date(2024, 1, 1), date(2024, 3, 1))))

    def test_weekly_periodicity(self):
        anchor = date(2024, 1, 3)
        rule = make_rule("weekly", anchor)
        for k in range(0, 20):
            base = anchor + timedelta(days=7 * k)
            self.assertTrue(occurs_on(rule, base))
            for extra in range(1, 7):
                self.assertFalse(occurs_on(rule, base + timedelta(days=extra)))

    def test_biweekly_periodicity(self):
        anchor = date(2024, 1, 3)
        rule = make_rule("biweekly", anchor)
        for k in range(0, 10):
            base = anchor + timedelta(days=14 * k)
            self.assertTrue(occurs_on(rule, base))
            for extra in range(1, 14):
                self.assertFalse(occurs_on(rule, base + timedelta(days=extra)))

    def test_monthly_clamps_to_month_end(self):
        """Anchored on the 31st: last day of shorter months, the 31st otherwise"""
        rule = make_rule("monthly", date(2023, 1, 31))
        self.assertTrue(occurs_on(rule, date(2023, 2, 28)))
        self.assertTrue(occurs_on(rule, date(2024, 2, 29)))
        self.assertFalse(occurs_on(rule, date(2024, 2, 28)))
        self.assertTrue(occurs_on(rule, date(2023, 4, 30)))
        self.assertTrue(occurs_on(rule, date(2023, 3, 31)))
        self.assertFalse(occurs_on(rule, date(2023, 3, 30)))

        fired = occurrences_between(rule, date(2023, 1, 1), date(2023, 12, 31))
        self.assertEqual(len(fired), 12)
        for d in fired:
            self.assertEqual(d.day, days_in_month(d.year, d.month))

    def test_monthly_mid_month(self):
        rule = make_rule("monthly", date(2024, 1, 15))
        self.assertTrue(occurs_on(rule, date(2024, 6, 15)))
        self.assertFalse(occurs_on(rule, date(2024, 6, 14)))

    def test_yearly(self):
        rule = make_rule("yearly", date(2020, 7, 4))
        self.assertTrue(occurs_on(rule, date(2025, 7, 4)))
        self.assertFalse(occurs_on(rule, date(2025, 7, 5)))
        self.assertFalse(occurs_on(rule, date(2025, 8, 4)))

    def test_yearly_leap_day_only_fires_in_leap_years(self):
        rule = make_rule("yearly", date(2020, 2, 29))
        self.assertFalse(occurs_on(rule, date(2021, 2, 28)))
        self.assertTrue(occurs_on(rule, date(2024, 2, 29)))

    def test_end_date_cutoff(self):
        end = date(2024, 3, 15)
        rule = make_rule("daily", date(2024, 3, 1), end=end)
        self.assertTrue(occurs_on(rule, end))
        self.assertFalse(occurs_on(rule, end + timedelta(days=1)))
        self.assertFalse(occurs_on(rule, date(2025, 1, 1)))

        weekly = make_rule("weekly", date(2024, 3, 1), end=end)
        self.assertTrue(occurs_on(weekly, date(2024, 3, 15)))
        self.assertFalse(occurs_on(weekly, date(2024, 3, 22)))

    def test_end_before_anchor_never_fires(self):
        rule = make_rule("daily", date(2024, 3, 10), end=date(2024, 3, 1))
        self.assertEqual(occurrences_between(rule, date(2024, 1, 1), date(2024, 12, 31)), [])

    def test_next_occurrence(self):
        rule = make_rule("monthly", date(2024, 1, 31))
        self.assertEqual(next_occurrence(rule, date(2024, 2, 1)), date(2024, 2, 29))
        self.assertEqual(next_occurrence(rule, date(2023, 6, 1)), date(2024, 1, 31))

        ended = make_rule("weekly", date(2024, 1, 1), end=date(2024, 1, 10))
        self.assertIsNone(next_occurrence(ended, date(2024, 1, 8)))


class TestLedger(unittest.TestCase):
    def setUp(self):
        self.ledger = Ledger()

    def test_add_assigns_unique_increasing_ids(self):
        ids = []
        for i in range(5):
            outcome = self.ledger.add(f"Bill {i}", -10, "one-time", date(2024, 1, 1))
            self.assertTrue(outcome.ok)
            ids.append(outcome.rule.id)
        self.assertEqual(len(set(ids)), 5)
        self.assertEqual(ids, sorted(ids))

    def test_add_validation(self):
        """Empty names, zero and non-numeric amounts are rejected without change"""
        cases = [
            ("", -10),
            ("   ", -10),
            ("Rent", 0),
            ("Rent", "abc"),
            ("Rent", float("nan")),
            ("Rent", None),
        ]
        for name, amount in cases:
            outcome = self.ledger.add(name, amount, "monthly", date(2024, 1, 1))
            self.assertFalse(outcome.ok, (name, amount))
            self.assertTrue(outcome.message)
        self.assertEqual(len(self.ledger), 0)

    def test_add_rejects_unknown_kind_and_category(self):
        self.assertFalse(self.ledger.add("Rent", -10, "fortnightly", date(2024, 1, 1)).ok)
        self.assertFalse(self.ledger.add("Rent", -10, "monthly", date(2024, 1, 1), category="pets").ok)
        self.assertEqual(len(self.ledger), 0)

    def test_add_defaults_category_to_other(self):
        rule = self.ledger.add("Coffee", -4.5, "daily", "2024-01-01").rule
        self.assertEqual(rule.category, Category.OTHER)
        self.assertEqual(rule.anchor_date, date(2024, 1, 1))
        self.assertEqual(rule.name, "Coffee")

    def test_remove(self):
        rule = self.ledger.add("Rent", -1200, "monthly", date(2024, 1, 1)).rule
        self.assertTrue(self.ledger.remove(rule.id).ok)
        self.assertEqual(len(self.ledger), 0)

        missing = self.ledger.remove(rule.id)
        self.assertFalse(missing.ok)
        self.assertIn("not found", missing.message)

    def test_edit_reinserts_under_fresh_id(self):
        old = self.ledger.add("Rent", -1200, "monthly", date(2024, 1, 1), category="rent").rule
        outcome = self.ledger.edit(old.id, amount=-1300)
        self.assertTrue(outcome.ok)
        self.assertNotEqual(outcome.rule.id, old.id)
        self.assertIsNone(self.ledger.get(old.id))
        self.assertEqual(outcome.rule.amount, -1300)
        self.assertEqual(outcome.rule.category, Category.RENT)
        self.assertEqual(len(self.ledger), 1)

    def test_failed_edit_keeps_original(self):
        old = self.ledger.add("Rent", -1200, "monthly", date(2024, 1, 1)).rule
        self.assertFalse(self.ledger.edit(old.id, amount=0).ok)
        self.assertFalse(self.ledger.edit(old.id, colour="red").ok)
        self.assertFalse(self.ledger.edit(12345, amount=5).ok)
        self.assertEqual(self.ledger.all_rules(), [old])

    def test_rules_on(self):
        rent = self.ledger.add("Rent", -1200, "monthly", date(2024, 1, 1)).rule
        pay = self.ledger.add("Pay", 2000, "biweekly", date(2024, 1, 5)).rule
        self.assertEqual(self.ledger.rules_on(date(2024, 2, 1)), [rent])
        self.assertEqual(self.ledger.rules_on(date(2024, 1, 19)), [pay])
        self.assertEqual(self.ledger.rules_on(date(2024, 1, 2)), [])

    def test_replace_all_is_atomic(self):
        self.ledger.add("Rent", -1200, "monthly", date(2024, 1, 1))
        before = self.ledger.all_rules()

        bad = [make_rule("daily", date(2024, 1, 1), rule_id=1), make_rule("daily", date(2024, 1, 1), rule_id=1)]
        self.assertFalse(self.ledger.replace_all(bad, 500, date(2024, 1, 1)).ok)
        self.assertEqual(self.ledger.all_rules(), before)
        self.assertEqual(self.ledger.initial_balance, 0)

        good = [make_rule("daily", date(2024, 1, 1), rule_id=7)]
        self.assertTrue(self.ledger.replace_all(good, 500, date(2024, 1, 1)).ok)
        self.assertEqual([r.id for r in self.ledger.all_rules()], [7])
        self.assertEqual(self.ledger.initial_balance, 500)
        self.assertGreater(self.ledger.add("Next", 1, "one-time", date(2024, 1, 1)).rule.id, 7)

    def test_set_initial_balance_defaults_to_first_of_month(self):
        outcome = self.ledger.set_initial_balance(250, today=date(2024, 5, 17))
        self.assertTrue(outcome.ok)
        self.assertEqual(self.ledger.initial_balance_date, date(2024, 5, 1))

        # an existing anchor is kept when no new one is given
        self.ledger.set_initial_balance(300, today=date(2024, 9, 2))
        self.assertEqual(self.ledger.initial_balance_date, date(2024, 5, 1))
        self.assertEqual(self.ledger.initial_balance, 300)

        self.assertFalse(self.ledger.set_initial_balance("lots").ok)
        self.assertEqual(self.ledger.initial_balance, 300)

    def test_effective_anchor(self):
        self.assertIsNone(self.ledger.effective_anchor())
        self.ledger.add("Late", -1, "one-time", date(2024, 6, 1))
        self.ledger.add("Early", -1, "one-time", date(2024, 2, 1))
        self.assertEqual(self.ledger.effective_anchor(), date(2024, 2, 1))
        self.ledger.set_initial_balance(0, date(2024, 4, 1))
        self.assertEqual(self.ledger.effective_anchor(), date(2024, 4, 1))

    def test_reset(self):
        self.ledger.settings["currency_symbol"] = "€"
        self.ledger.add("Rent", -1200, "monthly", date(2024, 1, 1))
        self.ledger.set_initial_balance(100, date(2024, 1, 1))
        self.ledger.reset()
        self.assertEqual(len(self.ledger), 0)
        self.assertEqual(self.ledger.initial_balance, 0)
        self.assertIsNone(self.ledger.initial_balance_date)
        self.assertEqual(self.ledger.settings["currency_symbol"], "$")

    def test_sorted_rules(self):
        rules = [
            make_rule("one-time", date(2024, 1, 1), amount=-5, rule_id=1, name="small"),
            make_rule("one-time", date(2024, 1, 1), amount=100, rule_id=2, name="pay"),
            make_rule("one-time", date(2024, 1, 1), amount=-50, rule_id=3, name="big"),
        ]
        self.assertEqual([r.id for r in sorted_rules(rules)], [2, 3, 1])

    def test_build_rule_parses_enums(self):
        rule = build_rule(3, " Gym ", "-30", "MONTHLY", "2024-01-01", "2024-12-31", "health")
        self.assertEqual(rule.name, "Gym")
        self.assertEqual(rule.amount, -30.0)
        self.assertEqual(rule.kind, RecurrenceKind.MONTHLY)
        self.assertEqual(rule.category, Category.HEALTH)
        self.assertEqual(rule.end_date, date(2024, 12, 31))
        self.assertTrue(rule.is_recurring)
        self.assertFalse(rule.is_income)

    def test_display_tables_cover_every_member(self):
        self.assertEqual(set(CATEGORY_EMOJI), set(Category))
        self.assertEqual(set(RECURRENCE_LABELS), set(RecurrenceKind))


class TestBalance(unittest.TestCase):
    def setUp(self):
        self.ledger = Ledger(initial_balance=1000, initial_balance_date=date(2024, 1, 1))
        self.ledger.add("Rent", -1200, "monthly", date(2024, 1, 31), category="rent")

    def test_end_to_end_rent(self):
        """Monthly rent anchored on the 31st, through a leap February"""
        self.assertEqual(balance_at(self.ledger, date(2024, 1, 30)), 1000)
        self.assertEqual(balance_at(self.ledger, date(2024, 1, 31)), -200)
        self.assertEqual(balance_at(self.ledger, date(2024, 2, 29)), -1400)
        self.assertEqual(balance_at(self.ledger, date(2024, 3, 31)), -2600)

    def test_series_is_one_point_per_day(self):
        series = balance_series(self.ledger, date(2024, 2, 1), date(2024, 2, 29))
        self.assertEqual(len(series), 29)
        self.assertIsInstance(series[0], BalancePoint)
        self.assertEqual(series[0].date, date(2024, 2, 1))
        self.assertEqual(series[0].balance, -200)
        self.assertEqual(series[-1].balance, -1400)

    def test_series_empty_when_start_after_end(self):
        self.assertEqual(balance_series(self.ledger, date(2024, 2, 2), date(2024, 2, 1)), [])

    def test_accumulator_consistency(self):
        """balance_at agrees with the last point of any series ending on the same day"""
        self.ledger.add("Pay", 850.25, "biweekly", date(2024, 1, 5))
        self.ledger.add("Coffee", -3.1, "daily", date(2024, 1, 10), end_date=date(2024, 4, 1))
        target = date(2024, 5, 20)
        expected = balance_at(self.ledger, target)
        for start in (date(2023, 11, 1), date(2024, 1, 1), date(2024, 3, 17), target):
            self.assertAlmostEqual(balance_series(self.ledger, start, target)[-1].balance, expected, places=9)

    def test_no_rules_is_flat(self):
        empty = Ledger(initial_balance=42.5)
        for d in (date(1990, 1, 1), date(2024, 6, 1), date(2100, 12, 31)):
            self.assertEqual(balance_at(empty, d), 42.5)
        self.assertTrue(all(p.balance == 42.5 for p in balance_series(empty, date(2024, 1, 1), date(2024, 1, 31))))

    def test_days_before_anchor_are_flat(self):
        self.ledger.add("Old purchase", -75, "one-time", date(2023, 12, 20))
        series = balance_series(self.ledger, date(2023, 12, 15), date(2024, 1, 2))
        self.assertTrue(all(p.balance == 1000 for p in series))

    def test_earliest_rule_is_anchor_without_initial_date(self):
        ledger = Ledger(initial_balance=100)
        ledger.add("Gift", 50, "one-time", date(2024, 3, 10))
        ledger.add("Phone", -20, "monthly", date(2024, 3, 15))
        self.assertEqual(balance_at(ledger, date(2024, 3, 9)), 100)
        self.assertEqual(balance_at(ledger, date(2024, 3, 10)), 150)
        self.assertEqual(balance_at(ledger, date(2024, 4, 15)), 110)

    def test_full_precision_across_long_walks(self):
        ledger = Ledger(initial_balance=0, initial_balance_date=date(2024, 1, 1))
        ledger.add("Round-up", 0.1, "daily", date(2024, 1, 1))
        self.assertAlmostEqual(balance_at(ledger, date(2024, 12, 31)), 36.6, places=9)

    def test_starting_balance_and_day_total(self):
        self.assertEqual(starting_balance(self.ledger, date(2024, 1, 31)), 1000)
        self.assertEqual(day_total(self.ledger, date(2024, 1, 31)), -1200)
        self.assertEqual(starting_balance(self.ledger, date(2024, 2, 1)), -200)

    def test_month_balances(self):
        balances = month_balances(self.ledger, 2024, 2)
        self.assertEqual(len(balances), 29)
        self.assertEqual(balances[1], -200)
        self.assertEqual(balances[28], -200)
        self.assertEqual(balances[29], -1400)

    def test_day_summary(self):
        self.ledger.add("Pay", 500, "one-time", date(2024, 1, 31))
        summary = day_summary(self.ledger, date(2024, 1, 31))
        self.assertEqual(summary.income, 500)
        self.assertEqual(summary.expenses, 1200)
        self.assertEqual(summary.net, -700)
        self.assertEqual([r.name for r in summary.rules], ["Pay", "Rent"])

    def test_range_totals(self):
        self.ledger.add("Pay", 2000, "monthly", date(2024, 1, 15))
        totals = range_totals(self.ledger, date(2024, 1, 1), date(2024, 3, 31))
        self.assertEqual(totals["income"], 6000)
        self.assertEqual(totals["expense"], 3600)
        self.assertEqual(totals["net"], 2400)


if __name__ == "__main__":
    unittest.main()
