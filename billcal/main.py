import logging

from billcal.cli import BillCalendarCLI
from billcal.config import DEFAULT_SAVE_NAME, LOG_FORMAT, LOG_LEVEL
from billcal.storage import load_ledger


def main():
    logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.WARNING), format=LOG_FORMAT)
    ledger = load_ledger(DEFAULT_SAVE_NAME)
    BillCalendarCLI(ledger, save_name=DEFAULT_SAVE_NAME).cmdloop()


if __name__ == "__main__":
    main()
