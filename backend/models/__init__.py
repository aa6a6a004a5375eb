"""SQLAlchemy ORM models."""

from .account import Account, AccountProvider
from .entry import Entry
from .exchange_rate import ExchangeRate
from .family import Category, Family, Merchant
from .holding import Holding
from .security import Security
from .sync_log import SyncLogEntry
from .sync_session import SyncSession
from .transaction import Trade, Transaction, Valuation
from .transfer import RejectedTransfer, Transfer
from .utils import generate_uuid

__all__ = ["Account", "AccountProvider", "Category", "Entry", "ExchangeRate", "Family", "Holding", "Merchant", "RejectedTransfer", "Security", "SyncLogEntry", "SyncSession", "Trade", "Transaction", "Transfer", "Valuation", "generate_uuid"]
