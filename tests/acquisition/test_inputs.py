"""Tests for address list reading, selection and validation."""

from __future__ import annotations

import logging

import pytest

from ContractArchive.Acquisition.errors import InvalidAddressError
from ContractArchive.Acquisition.inputs import (
    read_addresses,
    select_addresses,
    validate_address_list,
)

from .conftest import WETH

OTHER = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
THIRD = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"


def _write(tmp_path, *lines):
    path = tmp_path / "ethereum" / "addresses.txt"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n")
    return path


def test_read_addresses_checksums_and_skips_comments(tmp_path):
    _write(tmp_path, "# tokens", WETH.lower(), "", OTHER)

    assert read_addresses(tmp_path, "ethereum") == [WETH, OTHER]


def test_missing_list_is_empty(tmp_path):
    assert read_addresses(tmp_path, "ethereum") == []


def test_invalid_lines_are_skipped_with_warning(tmp_path, caplog):
    _write(tmp_path, WETH, "0x1234", "not-an-address", OTHER.lower())

    with caplog.at_level(logging.WARNING, logger="ContractArchive.Acquisition.inputs"):
        addresses = read_addresses(tmp_path, "ethereum")

    assert addresses == [WETH, OTHER]
    skipped = [r.getMessage() for r in caplog.records if "Skipping invalid" in r.getMessage()]
    assert len(skipped) == 2
    assert ":2:" in skipped[0] and "0x1234" in skipped[0]
    assert ":3:" in skipped[1]


class TestSelection:
    addresses = [WETH, OTHER, THIRD]

    def test_range_and_limit(self):
        assert select_addresses(self.addresses, start=1) == [OTHER, THIRD]
        assert select_addresses(self.addresses, end=2) == [WETH, OTHER]
        assert select_addresses(self.addresses, start=0, end=3, limit=1) == [WETH]

    def test_single_address(self):
        assert select_addresses(self.addresses, address=OTHER.lower()) == [OTHER]

    def test_single_unlisted_address_selects_nothing(self, caplog):
        with caplog.at_level(logging.WARNING, logger="ContractArchive.Acquisition.inputs"):
            assert select_addresses([OTHER], address=WETH) == []
        assert "not in the input list" in caplog.text

    def test_single_malformed_address_raises(self):
        with pytest.raises(InvalidAddressError):
            select_addresses(self.addresses, address="0x1234")


def test_validate_address_list(tmp_path):
    path = _write(tmp_path, WETH, WETH.lower(), "nonsense", OTHER.lower())

    report = validate_address_list(tmp_path, "ethereum")

    assert report.path == path
    assert report.total == 4
    assert report.invalid == [(3, "nonsense")]
    assert report.duplicates == [(2, WETH.lower())]
    assert report.not_checksummed == [(2, WETH.lower()), (4, OTHER.lower())]
    assert not report.valid


def test_clean_list_is_valid(tmp_path):
    _write(tmp_path, WETH, OTHER)

    assert validate_address_list(tmp_path, "ethereum").valid
