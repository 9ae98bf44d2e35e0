# ISO 4217 major currencies accepted for wishlists and items
CURRENCY_CODES: frozenset[str] = frozenset(
    {
        "AUD",
        "CAD",
        "CHF",
        "CNY",
        "EUR",
        "GBP",
        "JPY",
        "MXN",
        "NZD",
        "SGD",
        "USD",
        "ZAR",
    }
)

DEFAULT_CURRENCY = "USD"


def normalize_currency(value: str | None) -> str | None:
    if value is None:
        return None
    code = value.strip().upper()
    if not code:
        return None
    if code not in CURRENCY_CODES:
        raise ValueError(f"Unsupported currency: {value}")
    return code
