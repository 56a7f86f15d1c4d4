"""JSON friendly serialisation of KidLedger data structures."""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Dict, Optional

from .exchange import ExchangeResult
from .models import (
    CompanyAccount,
    LeaderboardEntry,
    MarketplaceListing,
    PurchaseRecord,
    RewardResult,
    Transaction,
)


class ApiExporter:
    """Convert KidLedger data structures to JSON friendly dictionaries.

    Money is emitted as two-decimal strings so clients never see float drift.
    """

    def account_snapshot(self, account: CompanyAccount) -> Dict[str, object]:
        return {
            "id": account.id,
            "child_id": account.owner_id,
            "company_name": account.company_name,
            "product_name": account.product_name,
            "specialty": account.specialty,
            "initial_capital": f"{account.initial_capital:.2f}",
            "current_balance": f"{account.balance:.2f}",
            "total_revenue": f"{account.total_revenue:.2f}",
            "total_expenses": f"{account.total_expenses:.2f}",
            "created_at": account.created_at.isoformat(),
        }

    def transaction(self, transaction: Transaction) -> Dict[str, object]:
        return {
            "id": transaction.id,
            "company_id": transaction.company_id,
            "transaction_type": transaction.kind.value,
            "amount": f"{transaction.amount:.2f}",
            "balance_after": f"{transaction.balance_after:.2f}",
            "description": transaction.description,
            "created_at": transaction.created_at.isoformat(),
        }

    def listing(self, listing: MarketplaceListing) -> Dict[str, object]:
        return {
            "id": listing.id,
            "seller_child_id": listing.seller_id,
            "item_name": listing.name,
            "description": listing.description,
            "price": f"{listing.price:.2f}",
            "quantity": listing.quantity,
            "status": listing.status.value,
            "image_url": listing.image_url,
            "created_at": listing.created_at.isoformat(),
        }

    def purchase(self, purchase: PurchaseRecord) -> Dict[str, object]:
        return {
            "id": purchase.id,
            "buyer_company_id": purchase.buyer_account_id,
            "item_id": purchase.listing_id,
            "transaction_id": purchase.transaction_id,
            "created_at": purchase.created_at.isoformat(),
        }

    def reward(self, result: RewardResult) -> Dict[str, object]:
        return {
            "xp_earned": result.xp_earned,
            "new_achievements": list(result.new_achievements),
            "leveled_up": result.leveled_up,
            "new_level": result.new_level,
        }

    def exchange(self, result: ExchangeResult) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "outcome": result.outcome.value,
            "message": result.message,
        }
        if result.shortfall is not None:
            payload["shortfall"] = f"{result.shortfall:.2f}"
        if result.ok:
            payload["buyer"] = self._optional_account(result.buyer)
            payload["seller"] = self._optional_account(result.seller)
            payload["item"] = self.listing(result.listing) if result.listing else None
            payload["purchase"] = self.purchase(result.purchase) if result.purchase else None
            payload["transactions"] = [self.transaction(tx) for tx in result.transactions]
        return payload

    def leaderboard_entry(self, entry: LeaderboardEntry) -> Dict[str, object]:
        value = f"{entry.value:.2f}" if isinstance(entry.value, Decimal) else entry.value
        return {
            "rank": entry.rank,
            "child_id": entry.child_id,
            "child_name": entry.child_name,
            "company_name": entry.company_name,
            "value": value,
        }

    def to_json(self, payload: Dict[str, object]) -> str:
        return json.dumps(payload, sort_keys=True)

    def _optional_account(self, account: Optional[CompanyAccount]) -> Optional[Dict[str, object]]:
        return self.account_snapshot(account) if account is not None else None


__all__ = ["ApiExporter"]
