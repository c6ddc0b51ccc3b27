"""Tests for the block-explorer fallback client."""

from __future__ import annotations

import json

import pytest

from ContractArchive.Acquisition.errors import ExplorerError
from ContractArchive.Acquisition.explorer_client import (
    ExplorerClient,
    explorer_name,
    normalize_source_code,
)
from ContractArchive.Acquisition.types import EXPLORER_SOURCE, MatchQuality

from .conftest import EXPLORER_API, WETH, explorer_payload, reply

STANDARD_JSON = {
    "language": "Solidity",
    "sources": {
        "contracts/Token.sol": {"content": "contract Token {}"},
        "@openzeppelin/contracts/token/ERC20/ERC20.sol": {"content": "contract ERC20 {}"},
    },
}


@pytest.fixture
def explorer(make_transport, clock):
    return ExplorerClient(
        make_transport(max_attempts=1), environ={"ETHERSCAN_API_KEY": "secret"}, clock=clock
    )


class TestNormalizeSourceCode:
    def test_flat_source(self):
        assert normalize_source_code("contract WETH9 {}", "WETH9") == {
            "WETH9.sol": "contract WETH9 {}"
        }

    def test_standard_json(self):
        sources = normalize_source_code(json.dumps(STANDARD_JSON), "Token")
        assert sources == {
            "contracts/Token.sol": "contract Token {}",
            "@openzeppelin/contracts/token/ERC20/ERC20.sol": "contract ERC20 {}",
        }

    def test_double_wrapped_standard_json(self):
        wrapped = "{" + json.dumps(STANDARD_JSON) + "}"
        assert set(normalize_source_code(wrapped, "Token")) == set(STANDARD_JSON["sources"])

    def test_unparsable_json_falls_back_to_flat(self):
        broken = '{"sources": {"A.sol": '
        assert normalize_source_code(broken, "A") == {"A.sol": broken}

    def test_missing_contract_name(self):
        assert normalize_source_code("x", "") == {"Contract.sol": "x"}


class TestFetchContractSource:
    def test_flat_contract(self, router, explorer, chain, clock):
        router.get(EXPLORER_API, reply(200, json_body=explorer_payload()))

        record = explorer.fetch_contract_source(chain, WETH.lower())

        assert record.address == WETH
        assert record.match_quality is MatchQuality.EXPLORER
        assert record.source_tag == EXPLORER_SOURCE
        assert record.sources == {"WETH9.sol": "contract WETH9 {}"}
        assert record.abi == [{"type": "function", "name": "deposit"}]
        assert record.metadata["output"]["abi"] == record.abi
        assert record.metadata["compiler"]["version"] == "v0.4.19+commit.c4cbbb05"
        assert record.metadata["settings"]["optimizer"] == {"enabled": False, "runs": 200}
        assert record.fetched_at == clock.now
        assert record.explorer["name"] == "Etherscan"
        assert record.explorer["contractName"] == "WETH9"
        assert record.explorer["proxy"] is False

    def test_query_parameters_include_api_key(self, router, explorer, chain):
        router.get(EXPLORER_API, reply(200, json_body=explorer_payload()))

        explorer.fetch_contract_source(chain, WETH)

        params = router.requests[0].url.params
        assert params["module"] == "contract"
        assert params["action"] == "getsourcecode"
        assert params["address"] == WETH
        assert params["apikey"] == "secret"

    def test_missing_key_is_omitted(self, router, make_transport, chain):
        router.get(EXPLORER_API, reply(200, json_body=explorer_payload()))
        client = ExplorerClient(make_transport(max_attempts=1), environ={})

        client.fetch_contract_source(chain, WETH)

        assert "apikey" not in router.requests[0].url.params

    def test_multi_file_contract(self, router, explorer, chain):
        payload = explorer_payload(json.dumps(STANDARD_JSON), ContractName="Token")
        router.get(EXPLORER_API, reply(200, json_body=payload))

        record = explorer.fetch_contract_source(chain, WETH)

        assert len(record.sources) == 2
        assert record.metadata["sources"]["contracts/Token.sol"] == {
            "content": "contract Token {}"
        }

    def test_error_status(self, router, explorer, chain):
        router.get(
            EXPLORER_API,
            reply(200, json_body={"status": "0", "message": "NOTOK", "result": "Invalid API Key"}),
        )

        with pytest.raises(ExplorerError, match="NOTOK"):
            explorer.fetch_contract_source(chain, WETH)

    def test_unverified_contract(self, router, explorer, chain):
        router.get(EXPLORER_API, reply(200, json_body=explorer_payload("")))

        with pytest.raises(ExplorerError, match="not verified"):
            explorer.fetch_contract_source(chain, WETH)

    def test_no_explorer_configured(self, explorer, chain, router):
        bare = chain.model_copy(update={"explorer_api_base": None})

        with pytest.raises(ExplorerError):
            explorer.fetch_contract_source(bare, WETH)
        assert router.requests == []

    def test_unparsable_abi_becomes_empty(self, router, explorer, chain):
        payload = explorer_payload(ABI="Contract source code not verified")
        router.get(EXPLORER_API, reply(200, json_body=payload))

        record = explorer.fetch_contract_source(chain, WETH)

        assert record.abi == []

    def test_proxy_details(self, router, explorer, chain):
        implementation = "0x" + "ab" * 20
        router.get(
            EXPLORER_API,
            reply(200, json_body=explorer_payload(Proxy="1", Implementation=implementation)),
        )

        record = explorer.fetch_contract_source(chain, WETH)

        assert record.explorer["proxy"] is True
        assert record.explorer["implementation"] == implementation


@pytest.mark.parametrize(
    ("api_base", "expected"),
    [
        ("https://api.etherscan.io/api", "Etherscan"),
        ("https://api-optimistic.etherscan.io/api", "Optimism Etherscan"),
        ("https://api.polygonscan.com/api", "Polygonscan"),
        ("https://api.arbiscan.io/api", "Arbiscan"),
        ("https://api.basescan.org/api", "Basescan"),
        ("https://explorer.example/api", "Unknown Explorer"),
    ],
)
def test_explorer_name(api_base, expected):
    assert explorer_name(api_base) == expected
