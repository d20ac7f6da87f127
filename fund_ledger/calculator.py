"""Holdings recalculation.

:func:`recompute` folds the transaction log and the manual price overrides
into per-fund holdings and an account summary.  It is a pure function: the
ledger store calls it after every mutation and replaces its derived state
with the result.

Cost accounting uses the weighted average method.  A BUY adds its amount and
fee to the fund's cost basis; a SELL removes the same fraction of the cost
basis as the fraction of shares sold, whatever the sale price.  Realised gains
are therefore not tracked separately.

Account level figures::

    totalInvestment = sum of holding cost bases
    totalValue      = sum of holding market values
    totalProfit     = totalValue - totalInvestment
    totalProfitRate = totalProfit / totalInvestment * 100   (0 without investment)
    totalFees       = sum of every transaction fee, liquidated funds included

BUY fees are part of the cost basis already, so ``totalProfit`` does not
subtract ``totalFees`` again.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from .models import AccountSummary, Holding, TradeSide, Transaction

logger = logging.getLogger(__name__)

# Positions at or below this share count are treated as closed.
SHARE_EPSILON = 0.01


@dataclass(slots=True)
class _FundAccumulator:
    fund_name: str
    total_shares: float = 0.0
    total_cost: float = 0.0
    current_price: float = 0.0


@dataclass(frozen=True, slots=True)
class RecomputeResult:
    holdings: tuple[Holding, ...] = ()
    summary: AccountSummary = field(default_factory=AccountSummary)


def recompute(
    transactions: Iterable[Transaction],
    overrides: Mapping[str, float],
) -> RecomputeResult:
    """Derive holdings and the account summary from the full log.

    Transactions are processed in the order given (insertion order), not by
    date.  Funds appear in the result in the order of their first trade.
    """

    funds: dict[str, _FundAccumulator] = {}
    total_fees = 0.0

    for tx in transactions:
        total_fees += tx.fee
        acc = funds.get(tx.fund_code)
        if acc is None:
            acc = funds[tx.fund_code] = _FundAccumulator(fund_name=tx.fund_name)
        acc.fund_name = tx.fund_name

        if tx.side is TradeSide.BUY:
            acc.total_shares += tx.quantity
            acc.total_cost += tx.amount + tx.fee
        else:
            _apply_sell(acc, tx)

        override = overrides.get(tx.fund_code)
        acc.current_price = override if override is not None else tx.price

    holdings = tuple(
        _to_holding(code, acc)
        for code, acc in funds.items()
        if acc.total_shares > SHARE_EPSILON
    )
    return RecomputeResult(holdings=holdings, summary=_summarise(holdings, total_fees))


def _apply_sell(acc: _FundAccumulator, tx: Transaction) -> None:
    if tx.quantity >= acc.total_shares:
        if tx.quantity > acc.total_shares:
            logger.warning(
                "Sell of %s shares of %s exceeds the %s shares held; closing the position",
                tx.quantity,
                tx.fund_code,
                acc.total_shares,
            )
        acc.total_shares = 0.0
        acc.total_cost = 0.0
        return

    sell_ratio = tx.quantity / acc.total_shares
    acc.total_cost -= acc.total_cost * sell_ratio
    acc.total_shares -= tx.quantity


def _to_holding(fund_code: str, acc: _FundAccumulator) -> Holding:
    current_value = acc.total_shares * acc.current_price
    total_profit = current_value - acc.total_cost
    profit_rate = total_profit / acc.total_cost * 100 if acc.total_cost > 0 else 0.0
    return Holding(
        fund_code=fund_code,
        fund_name=acc.fund_name,
        total_shares=acc.total_shares,
        total_cost=acc.total_cost,
        average_cost=acc.total_cost / acc.total_shares,
        current_price=acc.current_price,
        current_value=current_value,
        total_profit=total_profit,
        profit_rate=profit_rate,
    )


def _summarise(holdings: tuple[Holding, ...], total_fees: float) -> AccountSummary:
    total_investment = sum(h.total_cost for h in holdings)
    total_value = sum(h.current_value for h in holdings)
    total_profit = total_value - total_investment
    total_profit_rate = total_profit / total_investment * 100 if total_investment > 0 else 0.0
    return AccountSummary(
        total_investment=total_investment,
        total_value=total_value,
        total_fees=total_fees,
        total_profit=total_profit,
        total_profit_rate=total_profit_rate,
    )


__all__ = ["SHARE_EPSILON", "RecomputeResult", "recompute"]
