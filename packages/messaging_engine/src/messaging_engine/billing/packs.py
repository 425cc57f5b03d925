"""
Credit Packs

Prepaid bundles tenants can buy. Prices are in INR.
"""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class CreditPack:
    code: str
    name: str
    credits: Decimal
    price: Decimal
    currency: str = "INR"
    popular: bool = False

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "credits": str(self.credits),
            "price": str(self.price),
            "currency": self.currency,
            "popular": self.popular,
        }


CREDIT_PACKS: dict[str, CreditPack] = {
    pack.code: pack
    for pack in (
        CreditPack("starter", "Starter Bundle", Decimal("1000"), Decimal("500")),
        CreditPack("growth", "Growth Pack", Decimal("5000"), Decimal("2000"), popular=True),
        CreditPack("enterprise", "Enterprise Bulk", Decimal("20000"), Decimal("7000")),
    )
}
