"""Shared fixtures for SealVault conformance tests.

Provides a deterministic clock, the builder and user identities, token
issuance/verification bound to that clock, and in-memory custody and
storage collaborators.
"""
from __future__ import annotations

import pytest

from sealvault.core.clock import ManualClock
from sealvault.core.config import CustodyConfig
from sealvault.core.interfaces import InMemoryContentStore, InMemoryCustodyService
from sealvault.core.types import NamespaceSpec
from sealvault.crypto.identity import Keypair
from sealvault.orchestrator import CustodyOrchestrator
from sealvault.tokens.issuer import TokenIssuer
from sealvault.tokens.verification import TokenVerifier

# ---------------------------------------------------------------------------
# Common identities and identifiers used across tests
# ---------------------------------------------------------------------------
BUILDER_KEY = "5e" * 32
NAMESPACE_ID = "2d7c9a41-6b3e-4f80-9a15-c0e8d4b7f362"
START = 1_750_000_000.0


@pytest.fixture()
def namespace_id() -> str:
    return NAMESPACE_ID


# ---------------------------------------------------------------------------
# Clock and identities
# ---------------------------------------------------------------------------
@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture()
def builder() -> Keypair:
    return Keypair.from_hex(BUILDER_KEY)


@pytest.fixture()
def user() -> Keypair:
    return Keypair.generate()


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------
@pytest.fixture()
def issuer(clock: ManualClock) -> TokenIssuer:
    return TokenIssuer(clock)


@pytest.fixture()
def verifier(clock: ManualClock, builder: Keypair) -> TokenVerifier:
    return TokenVerifier([builder.did], clock=clock)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------
@pytest.fixture()
def custody(verifier: TokenVerifier, builder: Keypair) -> InMemoryCustodyService:
    service = InMemoryCustodyService(verifier)
    service.register_namespace(
        NamespaceSpec(namespace_id=NAMESPACE_ID, name="SealVault User Keys"),
        builder.did,
    )
    return service


@pytest.fixture()
def storage() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture()
def orchestrator(
    clock: ManualClock,
    custody: InMemoryCustodyService,
    storage: InMemoryContentStore,
) -> CustodyOrchestrator:
    config = CustodyConfig(builder_private_key=BUILDER_KEY, namespace_id=NAMESPACE_ID)
    return CustodyOrchestrator(config, custody, storage, clock=clock)
