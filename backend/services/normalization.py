"""
Enum Normalization
Maps the marketplace's ambiguous enum encodings to one canonical form

The contract emits raw integers, the subgraph schema exposes symbolic strings,
and older subgraph rows still carry integers (sometimes as numeric strings).
Every function here is pure and total: unrecognized input maps to an explicit
UNKNOWN / UNDEFINED sentinel, never None.
"""

from typing import Any, Optional

from models.marketplace import ListingStatus, ListingType, TokenSpec

LISTING_TYPE_BY_CODE = {
    0: ListingType.INVALID,
    1: ListingType.INDIVIDUAL_AUCTION,
    2: ListingType.FIXED_PRICE,
    3: ListingType.DYNAMIC_PRICE,
    4: ListingType.OFFERS_ONLY,
}

TOKEN_SPEC_BY_CODE = {
    0: TokenSpec.NONE,
    1: TokenSpec.ERC721,
    2: TokenSpec.ERC1155,
}

_LISTING_TYPE_BY_NAME = {t.value: t for t in LISTING_TYPE_BY_CODE.values()}
_TOKEN_SPEC_BY_NAME = {s.value: s for s in TOKEN_SPEC_BY_CODE.values()}
_STATUS_BY_NAME = {s.value: s for s in ListingStatus if s is not ListingStatus.UNKNOWN}


def _as_code(raw: Any) -> Optional[int]:
    """Integer code for ints and canonical numeric strings, else None"""
    # bool is an int subclass; True is not a listing type
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        try:
            value = int(text)
        except ValueError:
            return None
        # "01" or "+1" are not numeric encodings the sources produce
        return value if str(value) == text else None
    return None


def _as_symbol(raw: Any) -> Optional[str]:
    if isinstance(raw, str) and raw.strip():
        return raw.strip().upper()
    return None


def normalize_listing_type(raw: Any, lazy: Optional[bool] = None) -> ListingType:
    """
    Canonical listing type for an int, numeric string or symbolic string.

    lazy is a contextual hint: a DYNAMIC_PRICE listing must be lazy-minted,
    so one explicitly marked lazy=False is treated as FIXED_PRICE.
    """
    code = _as_code(raw)
    if code is not None:
        listing_type = LISTING_TYPE_BY_CODE.get(code, ListingType.UNKNOWN)
    else:
        symbol = _as_symbol(raw)
        listing_type = _LISTING_TYPE_BY_NAME.get(symbol, ListingType.UNKNOWN) if symbol else ListingType.UNKNOWN

    if listing_type is ListingType.DYNAMIC_PRICE and lazy is False:
        return ListingType.FIXED_PRICE
    return listing_type


def normalize_token_spec(raw: Any) -> TokenSpec:
    """Canonical token standard for an int, numeric string or symbolic string."""
    code = _as_code(raw)
    if code is not None:
        return TOKEN_SPEC_BY_CODE.get(code, TokenSpec.UNDEFINED)

    symbol = _as_symbol(raw)
    if symbol is None:
        return TokenSpec.UNDEFINED
    # "ERC-721" appears in some metadata payloads
    return _TOKEN_SPEC_BY_NAME.get(symbol.replace("-", ""), TokenSpec.UNDEFINED)


def normalize_status(raw: Any) -> ListingStatus:
    symbol = _as_symbol(raw)
    if symbol is None:
        return ListingStatus.UNKNOWN
    return _STATUS_BY_NAME.get(symbol, ListingStatus.UNKNOWN)


def normalize_address(raw: Any) -> Optional[str]:
    if isinstance(raw, str) and raw.strip():
        return raw.strip().lower()
    return None
