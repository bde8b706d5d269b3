import logging
import os
from decimal import Decimal

# Persistence (empty path keeps the ledger in memory)
STORE_PATH = os.getenv("TASKLEDGER_STORE_PATH", "")

# Bootstrap admin, seeded into an empty store
ADMIN_USERNAME = os.getenv("TASKLEDGER_ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("TASKLEDGER_ADMIN_PASSWORD", "admin123")

# Withdrawal limits applied to a freshly created store
MIN_WITHDRAWAL = Decimal(os.getenv("TASKLEDGER_MIN_WITHDRAWAL", "50"))
MAX_WITHDRAWAL = Decimal(os.getenv("TASKLEDGER_MAX_WITHDRAWAL", "10000"))

CURRENCY = os.getenv("TASKLEDGER_CURRENCY", "BDT")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )
