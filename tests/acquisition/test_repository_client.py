"""Tests for the primary repository client."""

from __future__ import annotations

import threading
import time

import httpx
import pytest

from ContractArchive.Acquisition.errors import (
    ExhaustedSourcesError,
    GatewayExhaustedError,
    HttpStatusError,
)
from ContractArchive.Acquisition.repository_client import RepositoryClient, content_ids
from ContractArchive.Acquisition.types import MatchQuality

from .conftest import (
    GATEWAY_A,
    GATEWAY_B,
    MIRROR_A,
    MIRROR_B,
    WETH,
    metadata_url,
    reply,
    sample_metadata,
)


@pytest.fixture
def client(make_transport, clock):
    return RepositoryClient(
        make_transport(max_attempts=1),
        mirrors=[MIRROR_A, MIRROR_B],
        gateways=[GATEWAY_A, GATEWAY_B],
        fetch_concurrency=2,
        clock=clock,
    )


class TestLookupPlan:
    def test_exact_on_every_mirror_before_approximate(self, client):
        plan = [(step.quality, step.mirror) for step in client.lookup_plan()]
        assert plan == [
            (MatchQuality.EXACT, MIRROR_A),
            (MatchQuality.EXACT, MIRROR_B),
            (MatchQuality.APPROXIMATE, MIRROR_A),
            (MatchQuality.APPROXIMATE, MIRROR_B),
        ]

    def test_metadata_url_uses_checksummed_address(self, client):
        step = client.lookup_plan()[0]
        assert client.metadata_url(step, 1, WETH.lower()) == metadata_url(
            MIRROR_A, "exact_match", 1, WETH
        )

    def test_custom_segments(self, make_transport):
        client = RepositoryClient(
            make_transport(),
            mirrors=[MIRROR_A],
            match_segments={"exact": "full_match", "approximate": "partial_match"},
        )
        urls = [client.metadata_url(step, 1, WETH) for step in client.lookup_plan()]
        assert urls == [
            metadata_url(MIRROR_A, "full_match", 1, WETH),
            metadata_url(MIRROR_A, "partial_match", 1, WETH),
        ]

    def test_source_path_is_url_encoded(self, client):
        step = client.lookup_plan()[0]
        url = client.source_file_url(step, 1, WETH, "@openzeppelin/contracts/token/ERC20.sol")
        assert url.endswith("/sources/%40openzeppelin%2Fcontracts%2Ftoken%2FERC20.sol")

    def test_requires_a_mirror(self, make_transport):
        with pytest.raises(ValueError):
            RepositoryClient(make_transport(), mirrors=[])


class TestFetchMetadata:
    def test_exact_match_at_first_mirror(self, router, client, clock):
        url = metadata_url(MIRROR_A, "exact_match", 1, WETH)
        router.get(url, reply(200, json_body=sample_metadata()))

        result = client.fetch_metadata(1, WETH)

        assert result.match_quality is MatchQuality.EXACT
        assert result.origin_url == url
        assert len(result.metadata["output"]["abi"]) == 2
        assert result.fetched_at == clock.now
        assert len(router.requests) == 1

    def test_falls_through_404s_to_approximate(self, router, client):
        url = metadata_url(MIRROR_B, "approximate_match", 1, WETH)
        router.get(url, reply(200, json_body=sample_metadata()))

        result = client.fetch_metadata(1, WETH)

        assert result.match_quality is MatchQuality.APPROXIMATE
        assert result.origin_url == url
        assert [str(r.url) for r in router.requests] == [
            metadata_url(MIRROR_A, "exact_match", 1, WETH),
            metadata_url(MIRROR_B, "exact_match", 1, WETH),
            metadata_url(MIRROR_A, "approximate_match", 1, WETH),
            url,
        ]

    def test_non_404_failure_does_not_abort_scan(self, router, client):
        router.get(metadata_url(MIRROR_A, "exact_match", 1, WETH), reply(500))
        router.get(
            metadata_url(MIRROR_B, "exact_match", 1, WETH),
            reply(200, json_body=sample_metadata()),
        )

        result = client.fetch_metadata(1, WETH)

        assert result.origin_url.startswith(MIRROR_B)

    def test_all_404_exhausts_without_last_error(self, router, client):
        with pytest.raises(ExhaustedSourcesError) as excinfo:
            client.fetch_metadata(1, WETH)

        assert excinfo.value.last_error is None
        assert len(router.requests) == 4

    def test_exhaustion_remembers_last_non_404_error(self, router, client):
        router.get(metadata_url(MIRROR_B, "exact_match", 1, WETH), reply(502))

        with pytest.raises(ExhaustedSourcesError) as excinfo:
            client.fetch_metadata(1, WETH)

        assert isinstance(excinfo.value.last_error, HttpStatusError)
        assert excinfo.value.last_error.status == 502

    def test_non_object_metadata_is_skipped(self, router, client):
        router.get(metadata_url(MIRROR_A, "exact_match", 1, WETH), reply(200, json_body=[1, 2]))
        router.get(
            metadata_url(MIRROR_B, "exact_match", 1, WETH),
            reply(200, json_body=sample_metadata()),
        )

        assert client.fetch_metadata(1, WETH).origin_url.startswith(MIRROR_B)


class TestFetchSources:
    @staticmethod
    def _source_url(client, mirror, path, quality=MatchQuality.EXACT):
        from ContractArchive.Acquisition.types import LookupStep

        return client.source_file_url(LookupStep(quality, mirror), 1, WETH, path)

    def test_fetches_every_source(self, router, client):
        metadata = sample_metadata()
        for path in metadata["sources"]:
            router.get(self._source_url(client, MIRROR_A, path), reply(200, text=f"// {path}"))

        sources = client.fetch_all_sources(1, WETH, metadata, MatchQuality.EXACT)

        assert sources == {
            "contracts/WETH9.sol": "// contracts/WETH9.sol",
            "contracts/lib/Math.sol": "// contracts/lib/Math.sol",
        }

    def test_failed_file_is_omitted(self, router, client):
        metadata = sample_metadata()
        metadata["sources"]["contracts/lib/Math.sol"]["urls"] = []
        router.get(
            self._source_url(client, MIRROR_A, "contracts/WETH9.sol"), reply(200, text="weth")
        )

        sources = client.fetch_all_sources(1, WETH, metadata, MatchQuality.EXACT)

        assert sources == {"contracts/WETH9.sol": "weth"}

    def test_second_mirror_serves_missing_file(self, router, client):
        metadata = sample_metadata()
        router.get(
            self._source_url(client, MIRROR_A, "contracts/WETH9.sol"), reply(200, text="weth")
        )
        router.get(
            self._source_url(client, MIRROR_B, "contracts/lib/Math.sol"), reply(200, text="math")
        )

        sources = client.fetch_all_sources(1, WETH, metadata, MatchQuality.EXACT)

        assert sources["contracts/lib/Math.sol"] == "math"

    def test_gateway_fallback_for_content_addressed_files(self, router, client):
        metadata = sample_metadata()
        router.get(
            self._source_url(client, MIRROR_A, "contracts/WETH9.sol"), reply(200, text="weth")
        )
        router.get(f"{GATEWAY_A}/QmMath", reply(503))
        router.get(f"{GATEWAY_B}/QmMath", reply(200, text="math from ipfs"))

        sources = client.fetch_all_sources(1, WETH, metadata, MatchQuality.EXACT)

        assert sources["contracts/lib/Math.sol"] == "math from ipfs"

    def test_inline_content_needs_no_request(self, router, client):
        metadata = sample_metadata(sources={"A.sol": {"content": "contract A {}"}})

        sources = client.fetch_all_sources(1, WETH, metadata, MatchQuality.EXACT)

        assert sources == {"A.sol": "contract A {}"}
        assert router.requests == []

    def test_approximate_quality_uses_approximate_segment(self, router, client):
        metadata = sample_metadata(sources={"A.sol": {"urls": []}})
        url = self._source_url(client, MIRROR_A, "A.sol", MatchQuality.APPROXIMATE)
        router.get(url, reply(200, text="a"))

        sources = client.fetch_all_sources(1, WETH, metadata, MatchQuality.APPROXIMATE)

        assert sources == {"A.sol": "a"}
        assert "approximate_match" in str(router.requests[0].url)

    def test_fan_out_is_bounded(self, router, make_transport):
        paths = [f"S{i}.sol" for i in range(6)]
        active = 0
        peak = 0
        lock = threading.Lock()

        def _slow(request: httpx.Request) -> httpx.Response:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1
            return httpx.Response(200, text="x", request=request)

        client = RepositoryClient(make_transport(), mirrors=[MIRROR_A], fetch_concurrency=2)
        for path in paths:
            router.get(self._source_url(client, MIRROR_A, path), _slow)

        metadata = sample_metadata(sources={p: {"urls": []} for p in paths})
        sources = client.fetch_all_sources(1, WETH, metadata, MatchQuality.EXACT)

        assert len(sources) == 6
        assert peak <= 2


class TestFetchContent:
    def test_first_gateway_success(self, router, client):
        router.get(f"{GATEWAY_A}/QmX", reply(200, text="blob"))

        assert client.fetch_content("QmX") == "blob"
        assert len(router.requests) == 1

    def test_gateways_tried_in_order(self, router, client):
        router.get(f"{GATEWAY_B}/QmX", reply(200, text="blob"))

        assert client.fetch_content("QmX") == "blob"
        assert [r.url.host for r in router.requests] == ["gw-a.example", "gw-b.example"]

    def test_aggregate_error_when_all_fail(self, router, client):
        router.get(f"{GATEWAY_A}/QmX", reply(500))

        with pytest.raises(GatewayExhaustedError) as excinfo:
            client.fetch_content("QmX")

        assert len(excinfo.value.errors) == 2


class TestExistenceCheck:
    def test_head_check(self, router, client):
        url = metadata_url(MIRROR_A, "approximate_match", 1, WETH)
        router.add("HEAD", url, reply(200))

        check = client.check_contract_exists(1, WETH)

        assert check is not None
        assert check.match_quality is MatchQuality.APPROXIMATE
        assert all(r.method == "HEAD" for r in router.requests)

    def test_head_check_miss(self, client):
        assert client.check_contract_exists(1, WETH) is None


def test_content_ids():
    assert content_ids(["ipfs://QmA", "dweb:/ipfs/QmB", "bzz-raw://abc", "ipfs://QmA"]) == [
        "QmA",
        "QmB",
    ]
    assert content_ids(None) == []
