import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def add_shirt(inventory, stock_m: int = 10, stock_l: int = 4, base_price: float = 100.0, tax_rate: float = 5) -> str:
    return inventory.add_item(
        name="Shirt",
        category="Apparel",
        base_price=base_price,
        tax_rate=tax_rate,
        variants=[
            {"size": "M", "color": "Blue", "stock": stock_m},
            {"size": "L", "color": "Red", "stock": stock_l, "price": 120.0},
        ],
        low_stock_threshold=3,
    )


def variant_stock(repo, item_id: str, size: str, color: str) -> int:
    item = repo.get_item(item_id)
    return item.variants[item.variant_index(size, color)].stock
