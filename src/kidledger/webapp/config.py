"""Configuration constants for the KidLedger web frontend."""
from __future__ import annotations

import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
SQLITE_FILE_NAME = os.environ.get("KIDLEDGER_SQLITE", "kidledger.db")
STARTING_CAPITAL = Decimal(os.environ.get("KIDLEDGER_STARTING_CAPITAL", "4750.00"))
LAUNCH_COST = Decimal(os.environ.get("KIDLEDGER_LAUNCH_COST", "50.00"))
REWARD_ATTEMPTS = int(os.environ.get("KIDLEDGER_REWARD_ATTEMPTS", "3"))
SESSION_CHILD_KEY = "child_id"
SESSION_NAME_KEY = "child_name"

__all__ = [
    "LAUNCH_COST",
    "REWARD_ATTEMPTS",
    "SESSION_CHILD_KEY",
    "SESSION_NAME_KEY",
    "SESSION_SECRET",
    "SQLITE_FILE_NAME",
    "STARTING_CAPITAL",
]
