"""
Normalization Tests
Listing type / token spec / status mapping across integer, numeric-string and symbolic encodings

Run: python -m pytest tests/test_normalization.py -v
"""

import pytest

from models.marketplace import ListingStatus, ListingType, TokenSpec
from services.normalization import (
    normalize_address,
    normalize_listing_type,
    normalize_status,
    normalize_token_spec,
)


class TestListingType:
    """Every encoding of the same listing type lands on one canonical value"""

    @pytest.mark.parametrize("raw", [1, "1", "INDIVIDUAL_AUCTION", "individual_auction", " INDIVIDUAL_AUCTION "])
    def test_auction_encodings_agree(self, raw):
        assert normalize_listing_type(raw) is ListingType.INDIVIDUAL_AUCTION

    @pytest.mark.parametrize("code,expected", [
        (0, ListingType.INVALID),
        (2, ListingType.FIXED_PRICE),
        (3, ListingType.DYNAMIC_PRICE),
        (4, ListingType.OFFERS_ONLY),
    ])
    def test_integer_codes(self, code, expected):
        assert normalize_listing_type(code) is expected
        assert normalize_listing_type(str(code)) is expected

    @pytest.mark.parametrize("raw", [None, "", 7, "7", -1, "BUY_NOW", "01", True, 2.0, {}])
    def test_unrecognized_maps_to_unknown(self, raw):
        assert normalize_listing_type(raw) is ListingType.UNKNOWN

    def test_dynamic_price_without_lazy_mint_is_fixed_price(self):
        assert normalize_listing_type("DYNAMIC_PRICE", lazy=False) is ListingType.FIXED_PRICE
        assert normalize_listing_type(3, lazy=False) is ListingType.FIXED_PRICE

    def test_dynamic_price_kept_when_lazy_or_unknown(self):
        assert normalize_listing_type("DYNAMIC_PRICE", lazy=True) is ListingType.DYNAMIC_PRICE
        assert normalize_listing_type("DYNAMIC_PRICE") is ListingType.DYNAMIC_PRICE

    def test_lazy_hint_does_not_touch_other_types(self):
        assert normalize_listing_type("FIXED_PRICE", lazy=True) is ListingType.FIXED_PRICE
        assert normalize_listing_type(1, lazy=False) is ListingType.INDIVIDUAL_AUCTION


class TestTokenSpec:

    @pytest.mark.parametrize("raw,expected", [
        (1, TokenSpec.ERC721),
        ("1", TokenSpec.ERC721),
        ("ERC721", TokenSpec.ERC721),
        ("erc-721", TokenSpec.ERC721),
        (2, TokenSpec.ERC1155),
        ("ERC1155", TokenSpec.ERC1155),
        (0, TokenSpec.NONE),
        ("NONE", TokenSpec.NONE),
    ])
    def test_known_encodings(self, raw, expected):
        assert normalize_token_spec(raw) is expected

    @pytest.mark.parametrize("raw", [None, 3, "ERC20", "", False])
    def test_unrecognized_maps_to_undefined(self, raw):
        assert normalize_token_spec(raw) is TokenSpec.UNDEFINED


class TestStatusAndAddress:

    def test_status(self):
        assert normalize_status("ACTIVE") is ListingStatus.ACTIVE
        assert normalize_status("finalized") is ListingStatus.FINALIZED
        assert normalize_status("PAUSED") is ListingStatus.UNKNOWN
        assert normalize_status(None) is ListingStatus.UNKNOWN

    def test_address(self):
        assert normalize_address(" 0xABC ") == "0xabc"
        assert normalize_address("") is None
        assert normalize_address(None) is None
