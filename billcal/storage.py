import json
import logging
import math
from datetime import date
from pathlib import Path
from typing import Optional

from billcal import config
from billcal.config import DEFAULT_SAVE_NAME, merged_settings
from billcal.dates import format_key, parse_key
from billcal.ledger import Ledger, build_rule
from billcal.models import Category, RecurrenceKind, SnapshotError

LOGGER = logging.getLogger(__name__)

SNAPSHOT_VERSION = 2


class SnapshotEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, date):
            return format_key(obj)
        if isinstance(obj, (RecurrenceKind, Category)):
            return obj.value
        return super().default(obj)


def _saves_dir(saves_dir: Optional[Path]) -> Path:
    return Path(saves_dir) if saves_dir is not None else config.SAVES_DIR


def to_snapshot(ledger: Ledger) -> dict:
    return {
        "version": SNAPSHOT_VERSION,
        "initialBalance": ledger.initial_balance,
        "initialBalanceDate": format_key(ledger.initial_balance_date) if ledger.initial_balance_date else None,
        "bills": [
            {
                "id": rule.id,
                "name": rule.name,
                "amount": rule.amount,
                "type": rule.kind.value,
                "category": rule.category.value,
                "date": format_key(rule.anchor_date),
                "endDate": format_key(rule.end_date) if rule.end_date else None,
            } for rule in ledger.all_rules()
        ],
        "settings": dict(ledger.settings),
    }


def migrate(payload) -> dict:
    """Bring an older snapshot up to the current shape, filling in defaults."""
    if not isinstance(payload, dict):
        raise SnapshotError("Snapshot must be a JSON object")

    version = payload.get("version") or 1
    if not isinstance(version, int) or version > SNAPSHOT_VERSION:
        raise SnapshotError(f"Unsupported snapshot version: {version!r}")

    bills = payload.get("bills") or []
    if not isinstance(bills, list):
        raise SnapshotError("'bills' must be a list")

    migrated_bills = []
    used_ids = {b.get("id") for b in bills if isinstance(b, dict) and isinstance(b.get("id"), int)}
    next_id = max(used_ids, default=0) + 1
    for bill in bills:
        if not isinstance(bill, dict):
            raise SnapshotError(f"Invalid bill entry: {bill!r}")
        bill = dict(bill)
        if not isinstance(bill.get("id"), int) or isinstance(bill.get("id"), bool):
            bill["id"] = next_id
            next_id += 1
        bill.setdefault("type", RecurrenceKind.ONE_TIME.value)
        bill["category"] = bill.get("category") or Category.OTHER.value
        bill.setdefault("endDate", None)
        migrated_bills.append(bill)

    return {
        "version": SNAPSHOT_VERSION,
        "initialBalance": payload.get("initialBalance") or 0,
        "initialBalanceDate": payload.get("initialBalanceDate") or None,
        "bills": migrated_bills,
        "settings": merged_settings(payload.get("settings")),
    }


def from_snapshot(payload) -> Ledger:
    data = migrate(payload)
    try:
        initial_balance = float(data["initialBalance"])
        if math.isnan(initial_balance) or math.isinf(initial_balance):
            raise ValueError("initialBalance must be finite")
        anchor = parse_key(data["initialBalanceDate"]) if data["initialBalanceDate"] else None

        rules = []
        for bill in data["bills"]:
            rules.append(build_rule(
                rule_id=bill["id"],
                name=bill.get("name"),
                amount=bill.get("amount"),
                kind=bill["type"],
                anchor_date=parse_key(bill["date"]) if bill.get("date") else None,
                end_date=parse_key(bill["endDate"]) if bill["endDate"] else None,
                category=bill["category"],
            ))
        return Ledger(initial_balance, anchor, rules, data["settings"])
    except (KeyError, TypeError, ValueError) as e:
        raise SnapshotError(f"Malformed snapshot: {e}") from e


def list_save_files(saves_dir: Optional[Path] = None):
    directory = _saves_dir(saves_dir)
    if not directory.exists():
        return []
    return sorted(f.stem for f in directory.glob("*.json"))


def save_ledger(ledger: Ledger, save_name=DEFAULT_SAVE_NAME, saves_dir: Optional[Path] = None) -> Path:
    directory = _saves_dir(saves_dir)
    directory.mkdir(parents=True, exist_ok=True)
    save_path = directory / f"{save_name}.json"
    export_json(ledger, save_path)
    LOGGER.info("Saved %d transactions to %s", len(ledger), save_path)
    return save_path


def load_ledger(save_name=DEFAULT_SAVE_NAME, saves_dir: Optional[Path] = None) -> Ledger:
    """Load a saved ledger; a missing or corrupt save gives an empty one."""
    filepath = _saves_dir(saves_dir) / f"{save_name}.json"
    if not filepath.exists():
        LOGGER.info("Save file %s not found, starting empty", filepath)
        return Ledger()

    try:
        ledger = import_json(filepath)
    except SnapshotError as e:
        LOGGER.warning("Ignoring corrupt save %s: %s", filepath, e)
        return Ledger()

    LOGGER.info("Loaded %d transactions from %s", len(ledger), filepath)
    return ledger


def export_json(ledger: Ledger, path) -> None:
    json_str = json.dumps(to_snapshot(ledger), cls=SnapshotEncoder, indent=2)
    Path(path).write_text(json_str, encoding="utf-8")


def import_json(path) -> Ledger:
    """Read a snapshot file into a new Ledger without touching any current one."""
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SnapshotError(f"Could not read {path}: {e}") from e
    return from_snapshot(payload)
