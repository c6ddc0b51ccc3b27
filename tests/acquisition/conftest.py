"""Shared fixtures for acquisition pipeline tests.

All network traffic goes through :class:`Router`, an ``httpx.MockTransport``
handler keyed by ``(method, url-without-query)``. Sleeps are recorded rather
than performed and clocks are fixed.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from ContractArchive.Acquisition.config import (
    ArchiveConfig,
    ChainConfig,
    RetrySettings,
)
from ContractArchive.Acquisition.transport import Transport

WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
MIRROR_A = "https://repo-a.example"
MIRROR_B = "https://repo-b.example"
GATEWAY_A = "https://gw-a.example/ipfs"
GATEWAY_B = "https://gw-b.example/ipfs"
EXPLORER_API = "https://api.etherscan.io/api"
RPC_URL = "https://rpc.example"

Responder = Callable[[httpx.Request], httpx.Response]


def reply(
    status: int = 200,
    *,
    json_body: Any = None,
    text: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Responder:
    """Responder building a fresh ``httpx.Response`` for every call."""

    def _respond(request: httpx.Request) -> httpx.Response:
        if json_body is not None:
            return httpx.Response(status, json=json_body, headers=headers, request=request)
        return httpx.Response(status, text=text or "", headers=headers, request=request)

    return _respond


def connect_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def _route_key(method: str, url: str) -> Tuple[str, str]:
    return method.upper(), str(httpx.URL(url)).split("?", 1)[0]


class Router:
    """Scripted remote endpoints.

    Each route holds a queue of responders; the last one repeats. Unrouted
    requests answer ``404``.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Responder]] = {}
        self.requests: List[httpx.Request] = []
        self._lock = threading.Lock()

    def add(self, method: str, url: str, *responders: Responder) -> "Router":
        self.routes.setdefault(_route_key(method, url), []).extend(responders)
        return self

    def get(self, url: str, *responders: Responder) -> "Router":
        return self.add("GET", url, *responders)

    def post(self, url: str, *responders: Responder) -> "Router":
        return self.add("POST", url, *responders)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = _route_key(request.method, str(request.url))
        with self._lock:
            self.requests.append(request)
            queue = self.routes.get(key)
            if not queue:
                responder: Responder = reply(404)
            elif len(queue) > 1:
                responder = queue.pop(0)
            else:
                responder = queue[0]
        return responder(request)

    def calls(self, url: Optional[str] = None, method: Optional[str] = None) -> List[httpx.Request]:
        selected = []
        for request in self.requests:
            key = _route_key(request.method, str(request.url))
            if url is not None and key[1] != _route_key("GET", url)[1]:
                continue
            if method is not None and key[0] != method.upper():
                continue
            selected.append(request)
        return selected

    def calls_to_host(self, host: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == host]


class Clock:
    """Mutable UTC clock."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)

    def millis(self) -> int:
        return int(self.now.timestamp() * 1000)


def metadata_url(mirror: str, segment: str, chain_id: int, address: str) -> str:
    return f"{mirror}/contracts/{segment}/{chain_id}/{address}/metadata.json"


def sample_metadata(**overrides: Any) -> Dict[str, Any]:
    """Compiler metadata with two ABI entries and two source files."""
    document: Dict[str, Any] = {
        "compiler": {"version": "0.4.19+commit.c4cbbb05"},
        "language": "Solidity",
        "output": {
            "abi": [
                {"type": "function", "name": "deposit", "inputs": [], "outputs": []},
                {"type": "event", "name": "Deposit", "inputs": []},
            ],
        },
        "settings": {"compilationTarget": {"contracts/WETH9.sol": "WETH9"}},
        "sources": {
            "contracts/WETH9.sol": {
                "keccak256": "0x" + "11" * 32,
                "urls": ["dweb:/ipfs/QmWeth9"],
            },
            "contracts/lib/Math.sol": {
                "keccak256": "0x" + "22" * 32,
                "urls": ["ipfs://QmMath"],
            },
        },
        "version": 1,
    }
    document.update(overrides)
    return document


def explorer_payload(source_code: str = "contract WETH9 {}", **fields: Any) -> Dict[str, Any]:
    row = {
        "SourceCode": source_code,
        "ABI": json.dumps([{"type": "function", "name": "deposit"}]),
        "ContractName": "WETH9",
        "CompilerVersion": "v0.4.19+commit.c4cbbb05",
        "OptimizationUsed": "0",
        "Runs": "200",
        "EVMVersion": "Default",
        "Library": "",
        "LicenseType": "None",
        "Proxy": "0",
        "Implementation": "",
    }
    row.update(fields)
    return {"status": "1", "message": "OK", "result": [row]}


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def make_transport(router: Router, sleeps: List[float]):
    """Factory for transports bound to the scripted router."""
    created: List[Transport] = []

    def _make(
        *,
        max_attempts: int = 3,
        base_delay_s: float = 1.0,
        max_delay_s: float = 10.0,
        cache=None,
        cache_writes: bool = True,
        rng: Callable[[], float] = lambda: 0.0,
        clock_ms: Optional[Callable[[], int]] = None,
    ) -> Transport:
        kwargs: Dict[str, Any] = {}
        if clock_ms is not None:
            kwargs["clock_ms"] = clock_ms
        transport = Transport(
            retry=RetrySettings(
                max_attempts=max_attempts,
                base_delay_s=base_delay_s,
                max_delay_s=max_delay_s,
            ),
            cache=cache,
            cache_writes=cache_writes,
            http_transport=httpx.MockTransport(router),
            sleep=sleeps.append,
            rng=rng,
            **kwargs,
        )
        created.append(transport)
        return transport

    yield _make
    for transport in created:
        transport.close()


@pytest.fixture
def chain() -> ChainConfig:
    return ChainConfig(
        name="ethereum",
        chain_id=1,
        rpc_url=RPC_URL,
        explorer_api_base=EXPLORER_API,
        explorer_api_key_ref="ETHERSCAN_API_KEY",
        repository_mirrors=[MIRROR_A, MIRROR_B],
        ipfs_gateways=[GATEWAY_A, GATEWAY_B],
    )


@pytest.fixture
def archive_config(tmp_path, chain: ChainConfig) -> ArchiveConfig:
    return ArchiveConfig.model_validate(
        {
            "retry": {"max_attempts": 1},
            "cache": {"enabled": False, "directory": str(tmp_path / "cache")},
            "logging": {"directory": None},
            "paths": {
                "archive_root": str(tmp_path / "archive"),
                "chains_root": str(tmp_path / "chains"),
            },
            "chains": {"ethereum": chain.model_dump()},
        }
    )
