"""Product name resolution: exact match first, then substring."""

from __future__ import annotations

from typing import Sequence

from whatsbot.services.pos_client import Product


def match_products(products: Sequence[Product], query: str) -> list[Product]:
    wanted = " ".join(query.lower().split())
    if not wanted:
        return []
    exact = [p for p in products if p.name.lower() == wanted]
    if exact:
        return exact[:1]
    return [p for p in products if wanted in p.name.lower()]
