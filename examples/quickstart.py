#!/usr/bin/env python3
"""SealVault quickstart -- in-memory custody run.

Demonstrates the core workflow:

1. Create a builder key and configuration.
2. Register a namespace with an in-memory custody service.
3. Seal a file and store the envelope.
4. Recover the file with the returned read token.
5. Show what happens to a tampered envelope.

Run:
    python examples/quickstart.py
"""
from __future__ import annotations

import asyncio
import logging
import tempfile
import uuid
from pathlib import Path

from sealvault import (
    CustodyConfig,
    CustodyOrchestrator,
    InMemoryContentStore,
    InMemoryCustodyService,
    Keypair,
    NamespaceSpec,
    TokenVerifier,
)


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # -- Step 1: Builder identity and configuration ---------------------------
    builder = Keypair.generate()
    namespace_id = str(uuid.uuid4())
    config = CustodyConfig(
        builder_private_key=builder.private_key_hex(),
        namespace_id=namespace_id,
    )
    print(f"[1] Builder: {builder.did}")

    # -- Step 2: In-memory collaborators -------------------------------------
    custody = InMemoryCustodyService(TokenVerifier([builder.did]))
    custody.register_namespace(
        NamespaceSpec(namespace_id=namespace_id, name=config.namespace_name),
        builder.did,
    )
    storage = InMemoryContentStore()
    orchestrator = CustodyOrchestrator(config, custody, storage)
    print(f"[2] Namespace registered: {namespace_id}")

    with tempfile.TemporaryDirectory() as workdir:
        source = Path(workdir) / "hello.txt"
        source.write_text("Hello, SealVault!\n")

        # -- Step 3: Seal and store ------------------------------------------
        stored = await orchestrator.encrypt_and_store(source)
        if not stored.ok or stored.receipt is None:
            print(f"[3] Store failed: {stored.error}")
            return
        receipt = stored.receipt
        print(f"[3] Stored {receipt.size} bytes as {receipt.content_id}")
        print(f"    User: {receipt.user_did}")

        # -- Step 4: Recover -------------------------------------------------
        recovered = await orchestrator.fetch_and_decrypt(receipt.content_id, receipt.token)
        print(f"[4] Recovered: {recovered.plaintext!r}")

        # -- Step 5: Tampering is detected ------------------------------------
        envelope = bytearray(await storage.get(receipt.content_id))
        envelope[-1] ^= 0x01
        storage.tamper(receipt.content_id, bytes(envelope))
        rejected = await orchestrator.fetch_and_decrypt(receipt.content_id, receipt.token)
        print(f"[5] Tampered envelope: {rejected.status} {rejected.error.code}")


if __name__ == "__main__":
    asyncio.run(main())
