"""Static classification data for ETFs whose metadata is incomplete upstream.

Geographic weights are rough factsheet estimates.
"""

from decimal import Decimal

from beatthemarket.constants import OTHERS, AllocationClass

US_ONLY = {"United States": Decimal("1.0")}

ALL_WORLD = {
    "United States": Decimal("0.63"),
    "Japan": Decimal("0.06"),
    "United Kingdom": Decimal("0.04"),
    "China": Decimal("0.03"),
    "France": Decimal("0.03"),
    "Canada": Decimal("0.03"),
    "Switzerland": Decimal("0.02"),
    "Germany": Decimal("0.02"),
    "Australia": Decimal("0.02"),
    "Taiwan": Decimal("0.02"),
    "India": Decimal("0.02"),
    OTHERS: Decimal("0.08"),
}

DEVELOPED_WORLD = {
    "United States": Decimal("0.70"),
    "Japan": Decimal("0.06"),
    "United Kingdom": Decimal("0.04"),
    "France": Decimal("0.03"),
    "Canada": Decimal("0.03"),
    OTHERS: Decimal("0.14"),
}

EMERGING_MARKETS = {
    "China": Decimal("0.25"),
    "India": Decimal("0.18"),
    "Taiwan": Decimal("0.17"),
    "South Korea": Decimal("0.12"),
    "Brazil": Decimal("0.05"),
    OTHERS: Decimal("0.23"),
}

WORLD_SMALL_CAP = {
    "United States": Decimal("0.60"),
    "Japan": Decimal("0.10"),
    "United Kingdom": Decimal("0.05"),
    OTHERS: Decimal("0.25"),
}

ETF_GEO_MAP: dict[str, dict[str, Decimal]] = {
    # S&P 500 / US equity
    "CSPX": US_ONLY,
    "CSPX.AS": US_ONLY,
    "CSSPX": US_ONLY,
    "CSSPX.AS": US_ONLY,
    "CSSPX.SW": US_ONLY,
    "CSSPXz": US_ONLY,
    "VUAA": US_ONLY,
    "VUAA.L": US_ONLY,
    "VUAA.DE": US_ONLY,
    "VUAA.MI": US_ONLY,
    "VUG": US_ONLY,
    "QQQ": US_ONLY,
    "QQQM": US_ONLY,
    "SPY": US_ONLY,
    "IVV": US_ONLY,
    "VOO": US_ONLY,
    # Global / regional
    "VWRA.L": ALL_WORLD,
    "VT": {
        "United States": Decimal("0.63"),
        "Japan": Decimal("0.06"),
        "United Kingdom": Decimal("0.04"),
        "China": Decimal("0.03"),
        OTHERS: Decimal("0.24"),
    },
    "IWDA": DEVELOPED_WORLD,
    "IWDA.L": DEVELOPED_WORLD,
    "EIMI": EMERGING_MARKETS,
    "EIMI.L": EMERGING_MARKETS,
    "WSML": WORLD_SMALL_CAP,
    "WSML.L": WORLD_SMALL_CAP,
    # Bonds / commodities
    "TLT": US_ONLY,
    "GLD": US_ONLY,
    "IAU": US_ONLY,
    "SLV": US_ONLY,
}

ETF_ASSET_MAP: dict[str, str] = {
    "TLT": AllocationClass.FIXED_INCOME,
    "GLD": AllocationClass.COMMODITIES,
    "IAU": AllocationClass.COMMODITIES,
    "SLV": AllocationClass.COMMODITIES,
}

TICKER_ALIASES: dict[str, str] = {
    "FB": "META",
    "BRK.B": "BRK-B",
}

FIXED_INCOME_KEYWORDS = ("Bond", "Government", "Treasury", "Fixed Income")
COMMODITY_KEYWORDS = ("Commodity", "Gold", "Silver", "Precious Metals")

# Fund category substrings that pin a fund's whole value to one region
CATEGORY_REGIONS: list[tuple[tuple[str, ...], str]] = [
    (("US", "United States", "Large Blend"), "United States"),
    (("Europe",), "Europe"),
    (("China",), "China"),
]
