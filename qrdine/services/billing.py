from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy.orm import Session
from qrdine.errors import NotFoundError, ValidationError
from qrdine.models.core import MenuItem

CENT = Decimal("0.01")

def _money(x) -> float:
    return float(Decimal(x).quantize(CENT, rounding=ROUND_HALF_UP))

def _dec(x) -> Decimal:
    # use str to avoid float binary artifacts
    return Decimal(str(x)).quantize(CENT, rounding=ROUND_HALF_UP)

def price_lines(db: Session, restaurant_id: str, lines) -> tuple[Decimal, list[dict]]:
    """Re-price requested lines against the live, active menu of a restaurant.

    ``lines`` are objects with ``menu_item_id``, ``quantity`` and ``notes``.
    Client prices are never read. Returns the total and one snapshot dict per
    line, ready to become OrderItem rows.
    """
    if not lines:
        raise ValidationError("At least one item is required")

    total = Decimal("0")
    priced: list[dict] = []
    for line in lines:
        if int(line.quantity) < 1:
            raise ValidationError("Quantity must be a positive integer")
        mi = (
            db.query(MenuItem)
            .filter(MenuItem.id == line.menu_item_id,
                    MenuItem.restaurant_id == restaurant_id,
                    MenuItem.active.is_(True))
            .first()
        )
        if not mi:
            raise NotFoundError(f"Menu item {line.menu_item_id} not found or inactive")
        price = _dec(mi.price)
        total += price * int(line.quantity)
        priced.append({
            "menu_item_id": mi.id,
            "item_name": mi.name,
            "price_at_order": str(price),
            "quantity": int(line.quantity),
            "notes": line.notes or "",
        })
    return _dec(total), priced
