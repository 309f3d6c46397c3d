from typing import Dict, Iterable, List

import schemas


def calculate_balances(
    expenses: Iterable[schemas.ExpenseDetail],
    members: Iterable[schemas.Member],
) -> List[schemas.BalanceSummary]:
    """
    Net balance per member over every unsettled split.

    Each unsettled share held by someone other than the payer is debited to
    that member and credited to the payer. The payer is only credited when
    they hold a split of the expense themselves. Settled splits, and splits
    that were never stored, count for nothing. Results follow the order of
    `members`; anyone outside the roster is left out.
    """
    members = list(members)
    balance_map: Dict[str, float] = {member.id: 0.0 for member in members}

    for expense in expenses:
        payer_id = expense.paid_by
        payer_in_split = any(split.user_id == payer_id for split in expense.splits)

        for split in expense.splits:
            if split.is_settled or split.user_id == payer_id:
                continue
            balance_map[split.user_id] = balance_map.get(split.user_id, 0.0) - split.amount
            if payer_in_split:
                balance_map[payer_id] = balance_map.get(payer_id, 0.0) + split.amount

    return [
        schemas.BalanceSummary(
            user_id=member.id,
            user_name=member.display_name,
            balance=balance_map.get(member.id, 0.0),
        )
        for member in members
    ]


def describe_balance(balance: float, currency: str = "USD") -> str:
    if balance > 0:
        return f"gets back {balance:.2f} {currency}"
    if balance < 0:
        return f"owes {abs(balance):.2f} {currency}"
    return "settled up"
