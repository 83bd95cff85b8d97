"""Splitting one stock entry into several.

Used by the ``split_stock_entry`` tool and by the cooked-recipe tool to
portion the stock entry a recipe produces.

The original entry is edited in place to hold the first amount; one new
entry is booked per remaining amount with the same best-before date,
location and price. Every resulting entry's note gets a ``#<entry id>-<n>``
suffix so the portions can be traced back to the entry they came from.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .grocy_client import ApiError, GrocyClient

logger = logging.getLogger("grocy-mcp")

AMOUNT_TOLERANCE = 1e-6

# Copied from the original entry onto every portion.
CARRIED_FIELDS = ("best_before_date", "location_id", "shopping_location_id", "price")


@dataclass
class SplitResult:
    entry_id: Any
    product_id: Any
    updated: Optional[dict] = None
    created: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.updated is not None and not self.failed

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "product_id": self.product_id,
            "complete": self.complete,
            "updated_entry": self.updated,
            "created_entries": self.created,
            "failed_entries": self.failed,
        }


def proportional_amounts(total: float, parts: int) -> list[float]:
    """Split ``total`` into ``parts`` equal amounts; the last absorbs rounding."""
    if parts < 1:
        raise ValueError("parts must be at least 1")
    share = round(total / parts, 4)
    amounts = [share] * (parts - 1)
    amounts.append(total - share * (parts - 1))
    return amounts


def portion_note(note: Optional[str], entry_id: Any, position: int) -> str:
    tag = f"#{entry_id}-{position}"
    note = (note or "").strip()
    return f"{note} {tag}" if note else tag


def validate_amounts(entry_amount: float, amounts: list[float]) -> None:
    if len(amounts) < 2:
        raise ValueError("at least two amounts are required to split an entry")
    if any(a is None or a <= 0 for a in amounts):
        raise ValueError("every amount must be a positive number")
    if abs(sum(amounts) - entry_amount) > AMOUNT_TOLERANCE:
        raise ValueError(
            f"amounts sum to {sum(amounts)} but the stock entry holds {entry_amount}"
        )


async def split_stock_entry(client: GrocyClient, entry: dict, amounts: list[float]) -> SplitResult:
    """Split ``entry`` into ``len(amounts)`` entries.

    Raises:
        ValueError: If the amounts do not describe a valid split.
        ApiError: If updating the original entry fails (nothing was changed).
    """
    entry_id = entry["id"]
    product_id = entry["product_id"]
    validate_amounts(float(entry["amount"]), amounts)

    result = SplitResult(entry_id=entry_id, product_id=product_id)
    carried = {k: entry[k] for k in CARRIED_FIELDS if entry.get(k) is not None}

    update = {
        **carried,
        "amount": amounts[0],
        "open": entry.get("open", 0),
        "note": portion_note(entry.get("note"), entry_id, 1),
    }
    if entry.get("purchased_date"):
        update["purchased_date"] = entry["purchased_date"]
    await client.put(f"/stock/entry/{entry_id}", body=update)
    result.updated = {"id": entry_id, "amount": amounts[0], "note": update["note"]}
    logger.info(f"Split stock entry {entry_id}: kept {amounts[0]}, creating {len(amounts) - 1} more")

    # Sequential so note positions match booking order.
    for position, amount in enumerate(amounts[1:], start=2):
        note = portion_note(entry.get("note"), entry_id, position)
        body = {**carried, "amount": amount, "transaction_type": "purchase", "note": note}
        try:
            response = await client.post(f"/stock/products/{product_id}/add", body=body)
        except ApiError as e:
            logger.error(f"Failed to create portion {position} of stock entry {entry_id}: {e}")
            result.failed.append({"position": position, "amount": amount, "note": note, "error": str(e)})
            continue
        result.created.append({"position": position, "amount": amount, "note": note, "transaction": response.data})

    return result
