"""Tests for ABI and compiler metadata structure checks."""

from __future__ import annotations

import pytest

from ContractArchive.Acquisition.errors import SchemaValidationError
from ContractArchive.Acquisition.schemas import validate_metadata
from ContractArchive.Acquisition.validation import (
    is_valid_solidity_type,
    validate_abi,
    validate_metadata_structure,
)

from .conftest import WETH, sample_metadata

TRANSFER = {
    "type": "event",
    "name": "Transfer",
    "inputs": [
        {"name": "from", "type": "address", "indexed": True},
        {"name": "to", "type": "address", "indexed": True},
        {"name": "value", "type": "uint256", "indexed": False},
    ],
}


@pytest.mark.parametrize(
    ("type_name", "expected"),
    [
        ("address", True),
        ("uint256", True),
        ("int8", True),
        ("bytes32", True),
        ("bytes", True),
        ("string[]", True),
        ("uint256[3][]", True),
        ("tuple[2]", True),
        ("uint7", False),
        ("uint264", False),
        ("bytes33", False),
        ("bytes0", False),
        ("mapping", False),
        ("[]", False),
    ],
)
def test_solidity_types(type_name, expected):
    assert is_valid_solidity_type(type_name) is expected


class TestValidateAbi:
    def test_well_formed_abi(self):
        abi = [
            {"type": "constructor", "inputs": [], "stateMutability": "nonpayable"},
            {
                "type": "function",
                "name": "transfer",
                "stateMutability": "nonpayable",
                "inputs": [{"name": "to", "type": "address"}, {"name": "v", "type": "uint256"}],
                "outputs": [{"name": "", "type": "bool"}],
            },
            TRANSFER,
            {"type": "error", "name": "Unauthorized", "inputs": []},
            {"type": "receive", "stateMutability": "payable"},
            {"type": "fallback", "stateMutability": "payable"},
        ]

        report = validate_abi(abi)

        assert report.valid
        assert report.warnings == []
        assert report.stats.functions == 1
        assert report.stats.events == 1
        assert report.stats.errors == 1
        assert report.stats.constructor and report.stats.receive and report.stats.fallback

    def test_not_a_list(self):
        assert validate_abi({"type": "function"}).errors == ["ABI must be an array"]

    def test_empty_abi_only_warns(self):
        report = validate_abi([])

        assert report.valid
        assert report.warnings == ["ABI is empty"]

    @pytest.mark.parametrize(
        ("item", "error"),
        [
            ("deposit", "ABI item at index 0 is not an object"),
            ({"name": "deposit"}, "ABI item at index 0 missing type field"),
            ({"type": "modifier", "name": "x"}, "ABI item at index 0 has invalid type: modifier"),
            ({"type": "function"}, "Function at index 0 missing name"),
            ({"type": "event", "inputs": []}, "Event at index 0 missing name"),
            ({"type": "error"}, "Error at index 0 missing name"),
            (
                {"type": "function", "name": "f", "stateMutability": "constant"},
                "Function f has invalid stateMutability: constant",
            ),
            (
                {"type": "constructor", "stateMutability": "view"},
                "Constructor has invalid stateMutability: view",
            ),
            (
                {"type": "receive", "stateMutability": "nonpayable"},
                "Receive function has invalid stateMutability: nonpayable",
            ),
            (
                {"type": "function", "name": "f", "inputs": [{"name": "x", "type": "uint7"}]},
                "Function f inputs parameter at index 0 has invalid type: uint7",
            ),
            (
                {"type": "function", "name": "f", "outputs": [{"name": "x"}]},
                "Function f outputs parameter at index 0 missing type",
            ),
            (
                {"type": "function", "name": "f", "inputs": "address"},
                "Function f inputs must be an array",
            ),
            (
                {"type": "function", "name": "f", "inputs": [{"name": "p", "type": "tuple"}]},
                "Function f inputs tuple parameter at index 0 missing components",
            ),
        ],
    )
    def test_malformed_entries(self, item, error):
        report = validate_abi([item])

        assert not report.valid
        assert error in report.errors

    def test_tuple_components_are_checked(self):
        item = {
            "type": "function",
            "name": "submit",
            "inputs": [
                {
                    "name": "order",
                    "type": "tuple[]",
                    "components": [
                        {"name": "maker", "type": "address"},
                        {"name": "n", "type": "uint3"},
                    ],
                }
            ],
        }

        report = validate_abi([item])

        assert report.errors == [
            "Function submit inputs tuple parameter 0 components parameter at index 1 "
            "has invalid type: uint3"
        ]

    def test_too_many_indexed_event_inputs(self):
        inputs = [{"name": f"a{i}", "type": "uint256", "indexed": True} for i in range(4)]

        report = validate_abi([{"type": "event", "name": "Wide", "inputs": inputs}])
        anonymous = validate_abi(
            [{"type": "event", "name": "Wide", "inputs": inputs, "anonymous": True}]
        )

        assert report.errors == ["Event Wide has too many indexed parameters (4, max 3)"]
        assert anonymous.valid

    def test_duplicates_and_repeated_specials_warn(self):
        abi = [
            {"type": "function", "name": "swap", "inputs": []},
            {"type": "function", "name": "swap", "inputs": [{"name": "x", "type": "uint256"}]},
            TRANSFER,
            TRANSFER,
            {"type": "fallback"},
            {"type": "fallback"},
        ]

        report = validate_abi(abi)

        assert report.valid
        assert report.warnings == [
            "Duplicate function name: swap",
            "Duplicate event name: Transfer",
            "Multiple fallback definitions found",
        ]

    def test_no_functions_or_events_warns(self):
        report = validate_abi([{"type": "error", "name": "Oops"}])

        assert report.valid
        assert report.warnings == ["ABI contains no functions or events"]


class TestValidateMetadataStructure:
    def test_sample_metadata_is_clean(self):
        report = validate_metadata_structure(sample_metadata())

        assert report.valid
        assert report.warnings == []

    def test_missing_compiler_and_output(self):
        report = validate_metadata_structure({"sources": {}})

        assert report.errors == [
            "Metadata missing compiler information",
            "Metadata missing output section",
        ]
        assert report.warnings == ["Metadata sources is empty"]

    def test_missing_compiler_version_and_abi(self):
        report = validate_metadata_structure(
            sample_metadata(compiler={"name": "solc"}, output={"devdoc": {}})
        )

        assert report.errors == ["Metadata missing compiler version", "Metadata output missing ABI"]

    def test_abi_errors_are_included(self):
        metadata = sample_metadata(output={"abi": [{"type": "function"}]})

        report = validate_metadata_structure(metadata)

        assert report.errors == ["Function at index 0 missing name"]

    def test_sources_must_be_an_object(self):
        report = validate_metadata_structure(sample_metadata(sources=["A.sol"]))

        assert report.errors == ["Metadata sources must be an object"]


class TestValidateMetadata:
    def test_accepts_augmented_metadata(self):
        metadata = sample_metadata(chainId=1, address=WETH)

        assert validate_metadata(metadata) is metadata

    def test_rejects_malformed_abi(self):
        metadata = sample_metadata(
            chainId=1,
            address=WETH,
            output={"abi": [{"type": "function", "name": "f", "stateMutability": "constant"}]},
        )

        with pytest.raises(SchemaValidationError, match="invalid stateMutability") as excinfo:
            validate_metadata(metadata)
        assert excinfo.value.details["errors"] == [
            "Function f has invalid stateMutability: constant"
        ]

    def test_rejects_missing_compiler_version(self):
        metadata = sample_metadata(chainId=1, address=WETH, compiler={})

        with pytest.raises(SchemaValidationError, match="compiler"):
            validate_metadata(metadata)
