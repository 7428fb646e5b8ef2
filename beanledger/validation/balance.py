"""
Balance Arithmetic

Only as much accounting arithmetic as routing and validating CRUD needs:
posting weights, per-currency residuals, and inference of the single
posting amount a transaction may leave out.

Weight of a posting:
- {N CUR}  per-unit cost  -> units * N CUR
- {{N CUR}} total cost    -> sign(units) * N CUR
- @ N CUR  per-unit price -> units * N CUR   (when there is no cost)
- @@ N CUR total price    -> sign(units) * N CUR
- otherwise the units themselves
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Optional

from beanledger.errors import EmptyTransactionError, UnbalancedTransactionError
from beanledger.models.ledger import Amount, Posting, TransactionSpec


def _sign(number: Decimal) -> int:
    return -1 if number < 0 else 1


def posting_weight(posting: Posting) -> Optional[Amount]:
    """The amount a posting contributes to its transaction's balance."""
    units = posting.units
    if units is None:
        return None

    cost = posting.cost
    if cost is not None and cost.number is not None:
        if cost.is_total:
            return Amount(number=_sign(units.number) * cost.number, currency=cost.currency)
        return Amount(number=units.number * cost.number, currency=cost.currency)

    price = posting.price
    if price is not None:
        if price.is_total:
            return Amount(
                number=_sign(units.number) * price.amount.number,
                currency=price.amount.currency,
            )
        return Amount(
            number=units.number * price.amount.number,
            currency=price.amount.currency,
        )

    return units


def residual(postings: Iterable[Posting]) -> dict[str, Decimal]:
    """Sum of weights per currency, skipping postings without an amount."""
    totals: dict[str, Decimal] = defaultdict(Decimal)
    for posting in postings:
        weight = posting_weight(posting)
        if weight is not None:
            totals[weight.currency] += weight.number
    return dict(totals)


def unbalanced_currencies(
    postings: Iterable[Posting],
    tolerance: Decimal,
) -> dict[str, Decimal]:
    """Currencies whose residual exceeds the tolerance."""
    return {
        currency: amount
        for currency, amount in residual(postings).items()
        if abs(amount) > tolerance
    }


def missing_amount_indexes(postings: list[Posting]) -> list[int]:
    return [i for i, posting in enumerate(postings) if posting.units is None]


def check_balance(
    spec: TransactionSpec,
    tolerance: Decimal,
    require_zero_residual: bool = True,
) -> None:
    """
    Raise if the transaction cannot balance.

    With require_zero_residual=False only the structural checks run
    (postings present, at most one amount omitted).

    Raises:
        EmptyTransactionError: No postings at all
        UnbalancedTransactionError: More than one amount omitted, a residual
            spread over several currencies with one amount omitted, or a
            non-zero residual with nothing omitted
    """
    if not spec.postings:
        raise EmptyTransactionError(
            "A transaction needs at least one posting",
            field="postings",
            value=[],
        )

    missing = missing_amount_indexes(spec.postings)
    if len(missing) > 1:
        raise UnbalancedTransactionError(
            f"{len(missing)} postings omit their amount; at most one may",
            field="postings",
            value=missing,
        )

    if not require_zero_residual:
        return

    open_residual = unbalanced_currencies(spec.postings, tolerance)
    if missing:
        if len(open_residual) > 1:
            raise UnbalancedTransactionError(
                "Cannot infer one amount for a residual in several currencies: "
                + ", ".join(sorted(open_residual)),
                field="postings",
                value={k: str(v) for k, v in open_residual.items()},
            )
        return

    if open_residual:
        summary = ", ".join(f"{amount} {currency}" for currency, amount in sorted(open_residual.items()))
        raise UnbalancedTransactionError(
            f"Transaction does not balance: residual {summary}",
            field="postings",
            value={k: str(v) for k, v in open_residual.items()},
        )


def interpolate(spec: TransactionSpec) -> TransactionSpec:
    """
    Fill in the one omitted posting amount, if any.

    The inferred amount is the negated residual. A transaction whose
    residual is zero (or spans several currencies) is returned unchanged.
    """
    missing = missing_amount_indexes(spec.postings)
    if len(missing) != 1:
        return spec

    totals = {c: n for c, n in residual(spec.postings).items() if n != 0}
    if len(totals) != 1:
        return spec

    (currency, number), = totals.items()
    postings = list(spec.postings)
    index = missing[0]
    postings[index] = postings[index].model_copy(
        update={"units": Amount(number=-number, currency=currency)}
    )
    return spec.model_copy(update={"postings": postings})
