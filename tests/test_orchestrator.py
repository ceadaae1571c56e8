"""Tests for CustodyOrchestrator -- the main entry point.

Covers:

1. **Namespace bootstrap** -- setup_required on first run, unregistered
   namespace, configured namespace.
2. **Store and recover** -- end-to-end with in-memory collaborators.
3. **Error handling** -- tampered envelope, expired or foreign tokens,
   tokens without a share reference, unexpected exceptions.
4. **Root token lifecycle** -- reuse and refresh.
5. **Logging** -- no key material in log output.
6. **HTTP wiring** -- from_config against a mock custody/storage network.
"""
from __future__ import annotations

import json
import logging

import httpx
import pytest

from sealvault.core.clock import ManualClock
from sealvault.core.config import CustodyConfig
from sealvault.core.interfaces import InMemoryContentStore, InMemoryCustodyService
from sealvault.core.types import DATA_CREATE, DATA_READ, NamespaceSpec, TokenKind
from sealvault.crypto.envelope import HEADER_SIZE
from sealvault.crypto.identity import Keypair
from sealvault.custody.cluster import ShardedCustodyService
from sealvault.orchestrator import CustodyOrchestrator
from sealvault.tokens.codec import parse_token, serialize_token
from sealvault.tokens.issuer import TokenIssuer
from sealvault.tokens.verification import TokenVerifier

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BUILDER_KEY = "11" * 32
BUILDER = Keypair.from_hex(BUILDER_KEY)
NAMESPACE = "5b0f2c1e-7d4a-4e8b-9f3c-2a1b0c9d8e7f"
START = 1_700_000_000.0
PLAINTEXT = b"The quick brown fox jumps over the lazy dog.\n" * 10


# ---------------------------------------------------------------------------
# Helpers & fixtures
# ---------------------------------------------------------------------------

def _make_config(**overrides) -> CustodyConfig:
    values = {"builder_private_key": BUILDER_KEY, "namespace_id": NAMESPACE}
    values.update(overrides)
    return CustodyConfig(**values)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture()
def custody(clock: ManualClock) -> InMemoryCustodyService:
    service = InMemoryCustodyService(TokenVerifier([BUILDER.did], clock=clock))
    service.register_namespace(NamespaceSpec(namespace_id=NAMESPACE, name="keys"), BUILDER.did)
    return service


@pytest.fixture()
def storage() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture()
def orchestrator(clock, custody, storage) -> CustodyOrchestrator:
    return CustodyOrchestrator(_make_config(), custody, storage, clock=clock)


class _RecordingCustody(InMemoryCustodyService):
    """In-memory custody that keeps every token handed to store_share."""

    def __init__(self, verifier: TokenVerifier) -> None:
        super().__init__(verifier)
        self.store_tokens = []

    async def store_share(self, **kwargs):
        self.store_tokens.append(kwargs["token"])
        return await super().store_share(**kwargs)


@pytest.fixture()
def source(tmp_path):
    path = tmp_path / "report.txt"
    path.write_bytes(PLAINTEXT)
    return path


# ===================================================================
# Namespace bootstrap
# ===================================================================

class TestNamespace:
    """ensure_namespace and the setup_required path."""

    @pytest.mark.asyncio
    async def test_configured_namespace(self, orchestrator: CustodyOrchestrator) -> None:
        assert await orchestrator.ensure_namespace() == (NAMESPACE, False)

    @pytest.mark.asyncio
    async def test_first_run_creates_namespace(self, clock, custody, storage, source) -> None:
        orchestrator = CustodyOrchestrator(
            _make_config(namespace_id=None), custody, storage, clock=clock,
        )
        result = await orchestrator.encrypt_and_store(source)

        assert result.status == "setup_required"
        assert not result.ok
        assert result.receipt is None
        assert result.namespace_id is not None
        profile = await custody.read_profile(BUILDER.did)
        assert result.namespace_id in profile.namespaces

    @pytest.mark.asyncio
    async def test_unregistered_namespace(self, clock, custody, storage, source) -> None:
        orchestrator = CustodyOrchestrator(
            _make_config(namespace_id="not-registered"), custody, storage, clock=clock,
        )
        result = await orchestrator.encrypt_and_store(source)

        assert result.status == "error"
        assert result.error is not None
        assert result.error.code == "SV-E402"
        assert result.error.details["namespace_id"] == "not-registered"


# ===================================================================
# Store and recover
# ===================================================================

class TestStoreAndRecover:
    """encrypt_and_store / fetch_and_decrypt / run."""

    @pytest.mark.asyncio
    async def test_encrypt_and_store(self, orchestrator, storage, source) -> None:
        result = await orchestrator.encrypt_and_store(source)

        assert result.ok
        receipt = result.receipt
        assert receipt is not None
        assert receipt.namespace_id == NAMESPACE
        assert receipt.size == len(PLAINTEXT) + HEADER_SIZE
        envelope = await storage.get(receipt.content_id)
        assert len(envelope) == receipt.size
        assert PLAINTEXT not in envelope

        token = parse_token(receipt.token)
        assert token.audience == receipt.user_did
        assert token.command == DATA_READ
        assert token.body == {
            "namespace_id": NAMESPACE,
            "document_id": receipt.document_id,
        }
        assert token.root.issuer == BUILDER.did

    @pytest.mark.asyncio
    async def test_share_owned_by_user_with_builder_execute(
        self, orchestrator, custody, source,
    ) -> None:
        receipt = (await orchestrator.encrypt_and_store(source)).receipt
        assert custody.raw_share(NAMESPACE, receipt.document_id) is not None
        stored = custody._shares[(NAMESPACE, receipt.document_id)]
        assert stored.owner == receipt.user_did
        assert stored.acl.grantee == BUILDER.did
        assert stored.acl.execute and not stored.acl.read and not stored.acl.write

    @pytest.mark.asyncio
    async def test_share_stored_with_user_invocation(self, clock, storage, source) -> None:
        custody = _RecordingCustody(TokenVerifier([BUILDER.did], clock=clock))
        custody.register_namespace(NamespaceSpec(namespace_id=NAMESPACE, name="keys"), BUILDER.did)
        orchestrator = CustodyOrchestrator(_make_config(), custody, storage, clock=clock)

        receipt = (await orchestrator.encrypt_and_store(source)).receipt

        token = custody.store_tokens[0]
        assert token.kind == TokenKind.INVOCATION
        assert token.issuer == receipt.user_did
        assert token.audience == BUILDER.did
        assert token.command == DATA_CREATE
        assert token.body == {
            "namespace_id": NAMESPACE,
            "document_id": receipt.document_id,
        }
        assert token.parent.kind == TokenKind.DELEGATION
        assert token.parent.audience == receipt.user_did
        assert token.expires_at == token.parent.expires_at

    @pytest.mark.asyncio
    async def test_each_file_gets_a_new_user(self, orchestrator, source) -> None:
        first = (await orchestrator.encrypt_and_store(source)).receipt
        second = (await orchestrator.encrypt_and_store(source)).receipt
        assert first.user_did != second.user_did
        assert first.document_id != second.document_id
        assert first.content_id != second.content_id

    @pytest.mark.asyncio
    async def test_fetch_and_decrypt(self, orchestrator, source) -> None:
        receipt = (await orchestrator.encrypt_and_store(source)).receipt
        result = await orchestrator.fetch_and_decrypt(receipt.content_id, receipt.token)
        assert result.ok
        assert result.plaintext == PLAINTEXT

    @pytest.mark.asyncio
    async def test_fetch_with_token_object(self, orchestrator, source) -> None:
        receipt = (await orchestrator.encrypt_and_store(source)).receipt
        token = parse_token(receipt.token)
        result = await orchestrator.fetch_and_decrypt(receipt.content_id, token)
        assert result.plaintext == PLAINTEXT

    @pytest.mark.asyncio
    async def test_fetch_writes_files(self, orchestrator, source, tmp_path) -> None:
        receipt = (await orchestrator.encrypt_and_store(source)).receipt
        out = tmp_path / "out" / "plain.txt"
        kept = tmp_path / "out" / "envelope.bin"
        await orchestrator.fetch_and_decrypt(
            receipt.content_id, receipt.token, output_path=out, envelope_path=kept,
        )
        assert out.read_bytes() == PLAINTEXT
        assert len(kept.read_bytes()) == receipt.size

    @pytest.mark.asyncio
    async def test_run_end_to_end(self, orchestrator, source, tmp_path) -> None:
        out_dir = tmp_path / "results"
        result = await orchestrator.run(source, output_dir=out_dir)

        assert result.ok
        assert result.plaintext == PLAINTEXT
        assert result.receipt is not None
        decrypted = list(out_dir.glob("decrypted_report_*.txt"))
        encrypted = list(out_dir.glob("encrypted_report_*.txt"))
        assert len(decrypted) == 1 and len(encrypted) == 1
        assert decrypted[0].read_bytes() == PLAINTEXT
        assert encrypted[0].read_bytes() != PLAINTEXT

    @pytest.mark.asyncio
    async def test_run_across_three_nodes(self, clock, storage, source) -> None:
        verifier = TokenVerifier([BUILDER.did], clock=clock)
        nodes = [InMemoryCustodyService(verifier) for _ in range(3)]
        for node in nodes:
            node.register_namespace(NamespaceSpec(namespace_id=NAMESPACE, name="k"), BUILDER.did)
        orchestrator = CustodyOrchestrator(
            _make_config(), ShardedCustodyService(nodes), storage, clock=clock,
        )
        result = await orchestrator.run(source)
        assert result.ok
        assert result.plaintext == PLAINTEXT


# ===================================================================
# Error handling
# ===================================================================

class TestErrors:
    """Failures become tagged error results."""

    @pytest.mark.asyncio
    async def test_tampered_envelope(self, orchestrator, storage, source) -> None:
        receipt = (await orchestrator.encrypt_and_store(source)).receipt
        envelope = bytearray(await storage.get(receipt.content_id))
        envelope[-1] ^= 0xFF
        storage.tamper(receipt.content_id, bytes(envelope))

        result = await orchestrator.fetch_and_decrypt(receipt.content_id, receipt.token)
        assert result.status == "error"
        assert result.plaintext is None
        assert result.error.code == "SV-E201"

    @pytest.mark.asyncio
    async def test_failed_open_writes_no_output(self, orchestrator, storage, source, tmp_path) -> None:
        receipt = (await orchestrator.encrypt_and_store(source)).receipt
        storage.tamper(receipt.content_id, b"\x00" * 10)
        out = tmp_path / "plain.txt"
        result = await orchestrator.fetch_and_decrypt(
            receipt.content_id, receipt.token, output_path=out,
        )
        assert result.error.code == "SV-E200"
        assert not out.exists()

    @pytest.mark.asyncio
    async def test_expired_token(self, orchestrator, clock, source) -> None:
        receipt = (await orchestrator.encrypt_and_store(source)).receipt
        clock.advance(orchestrator.config.delegation_ttl_seconds)
        result = await orchestrator.fetch_and_decrypt(receipt.content_id, receipt.token)
        assert result.error.code == "SV-E303"

    @pytest.mark.asyncio
    async def test_foreign_builder_token(self, orchestrator, clock, source) -> None:
        receipt = (await orchestrator.encrypt_and_store(source)).receipt
        impostor = Keypair.generate()
        issuer = TokenIssuer(clock)
        root = issuer.issue_root(impostor, command="/nil/db", ttl_seconds=7200)
        token = issuer.delegate(
            root,
            DATA_READ,
            receipt.user_did,
            3600,
            impostor,
            body={"namespace_id": NAMESPACE, "document_id": receipt.document_id},
        )
        result = await orchestrator.fetch_and_decrypt(receipt.content_id, serialize_token(token))
        assert result.error.code == "SV-E304"

    @pytest.mark.asyncio
    async def test_token_without_share_reference(self, orchestrator, source) -> None:
        receipt = (await orchestrator.encrypt_and_store(source)).receipt
        bare = orchestrator.issuer.delegate(
            orchestrator.builder.root_token(),
            DATA_READ,
            receipt.user_did,
            60,
            orchestrator.builder.keypair,
        )
        result = await orchestrator.fetch_and_decrypt(receipt.content_id, bare)
        assert result.error.code == "SV-E302"

    @pytest.mark.asyncio
    async def test_unknown_content(self, orchestrator, source) -> None:
        receipt = (await orchestrator.encrypt_and_store(source)).receipt
        result = await orchestrator.fetch_and_decrypt("missing", receipt.token)
        assert result.error.code == "SV-E502"

    @pytest.mark.asyncio
    async def test_missing_input_file(self, orchestrator, tmp_path) -> None:
        result = await orchestrator.encrypt_and_store(tmp_path / "nope.txt")
        assert result.status == "error"
        assert result.error.code == "SV-E000"
        assert result.error.details["exception_type"] == "FileNotFoundError"

    @pytest.mark.asyncio
    async def test_run_stops_after_failed_store(self, clock, custody, storage, source) -> None:
        orchestrator = CustodyOrchestrator(
            _make_config(namespace_id="unknown"), custody, storage, clock=clock,
        )
        result = await orchestrator.run(source)
        assert result.error.code == "SV-E402"
        assert result.plaintext is None


# ===================================================================
# Root token lifecycle
# ===================================================================

class TestRootToken:
    """BuilderContext.root_token refresh policy."""

    def test_root_claims(self, orchestrator) -> None:
        root = orchestrator.builder.root_token()
        assert root.issuer == root.audience == BUILDER.did
        assert str(root.command) == "/nil/db"
        assert root.expires_at == int(START) + 7200

    def test_reused_until_margin(self, orchestrator, clock) -> None:
        first = orchestrator.builder.root_token()
        clock.advance(7200 - 301)
        assert orchestrator.builder.root_token() is first
        clock.advance(2)
        assert orchestrator.builder.root_token() is not first

    def test_covering_forces_refresh(self, orchestrator, clock) -> None:
        first = orchestrator.builder.root_token()
        clock.advance(4000)
        assert orchestrator.builder.root_token() is first
        refreshed = orchestrator.builder.root_token(covering=3600)
        assert refreshed is not first
        assert refreshed.expires_at == int(START) + 4000 + 7200

    @pytest.mark.asyncio
    async def test_store_late_in_root_lifetime(self, orchestrator, clock, source) -> None:
        orchestrator.builder.root_token()
        clock.advance(7000)
        result = await orchestrator.encrypt_and_store(source)
        assert result.ok


# ===================================================================
# Logging
# ===================================================================

class TestLogging:
    """Progress is logged without key material."""

    @pytest.mark.asyncio
    async def test_no_secrets_in_logs(self, orchestrator, custody, source, caplog) -> None:
        with caplog.at_level(logging.DEBUG, logger="sealvault"):
            result = await orchestrator.run(source)

        share = custody.raw_share(NAMESPACE, result.receipt.document_id)
        assert share is not None
        assert share not in caplog.text
        assert BUILDER_KEY not in caplog.text
        assert result.receipt.token not in caplog.text
        assert "Envelope stored with content id" in caplog.text

    @pytest.mark.asyncio
    async def test_errors_logged_with_code(self, orchestrator, caplog, tmp_path) -> None:
        with caplog.at_level(logging.ERROR, logger="sealvault"):
            await orchestrator.encrypt_and_store(tmp_path / "missing.txt")
        assert "SV-E000" in caplog.text


# ===================================================================
# HTTP wiring
# ===================================================================

class _FakeNetwork:
    """Mock handler emulating three custody nodes and content storage."""

    def __init__(self) -> None:
        self.shares: dict[tuple[str, str, str], str] = {}
        self.blobs: dict[str, bytes] = {}
        self.authorized: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host, path = request.url.host, request.url.path
        if host == "upload.test":
            content_id = f"tx-{len(self.blobs)}"
            self.blobs[content_id] = request.content
            return httpx.Response(200, json={"id": content_id})
        if host == "gateway.test":
            blob = self.blobs.get(path.lstrip("/"))
            return httpx.Response(200, content=blob) if blob else httpx.Response(404)

        if "authorization" in request.headers:
            self.authorized.append(host)
        if path.startswith("/v1/builders/"):
            return httpx.Response(
                200, json={"data": {"did": BUILDER.did, "collections": [NAMESPACE]}},
            )
        if path == "/v1/data/create":
            body = json.loads(request.content)
            document = body["data"][0]
            key = (host, body["collection"], document["_id"])
            self.shares[key] = document["private_key"]["%share"]
            return httpx.Response(200, json={"data": {"created": [document["_id"]]}})
        if path.startswith("/v1/data/"):
            _, _, _, namespace_id, document_id = path.split("/")
            share = self.shares.get((host, namespace_id, document_id))
            if share is None:
                return httpx.Response(404)
            return httpx.Response(
                200, json={"data": {"_id": document_id, "private_key": {"%share": share}}},
            )
        return httpx.Response(400)


class TestFromConfig:
    """HTTP collaborators wired from configuration."""

    @pytest.mark.asyncio
    async def test_end_to_end_over_http(self, source) -> None:
        network = _FakeNetwork()
        config = _make_config(
            custody_nodes=["https://n1.test", "https://n2.test", "https://n3.test"],
            storage_gateway_url="https://gateway.test",
            storage_upload_url="https://upload.test/v1",
        )
        orchestrator = CustodyOrchestrator.from_config(
            config, transport=httpx.MockTransport(network),
        )
        result = await orchestrator.run(source)

        assert result.ok, result.error
        assert result.plaintext == PLAINTEXT
        assert len(network.shares) == 3
        assert {host for host, _, _ in network.shares} == {"n1.test", "n2.test", "n3.test"}
        assert set(network.authorized) == {"n1.test", "n2.test", "n3.test"}
        assert result.receipt.content_id in network.blobs
