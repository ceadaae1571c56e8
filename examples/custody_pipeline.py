#!/usr/bin/env python3
"""SealVault custody pipeline against live services.

Reads configuration from ``SEALVAULT_*`` environment variables (or a
``.env`` file), seals the given file, stores the envelope, then recovers
it into the output directory.

On the first run without ``SEALVAULT_NAMESPACE_ID`` a namespace is
created and the run stops; set the printed id and run again.

Run:
    SEALVAULT_BUILDER_PRIVATE_KEY=<64 hex chars> \\
        python examples/custody_pipeline.py path/to/file [output-dir]
"""
from __future__ import annotations

import asyncio
import logging
import sys

from sealvault import CustodyConfig, CustodyOrchestrator


async def main(path: str, output_dir: str) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    orchestrator = CustodyOrchestrator.from_config(CustodyConfig())
    result = await orchestrator.run(path, output_dir=output_dir)

    if result.status == "setup_required":
        print(f"Namespace created: {result.namespace_id}")
        print(f"Set SEALVAULT_NAMESPACE_ID={result.namespace_id} and run again.")
        return 0
    if result.error is not None:
        print(f"Failed: {result.error.code} {result.error.message}")
        return 1

    receipt = result.receipt
    print(f"Content id:  {receipt.content_id}")
    print(f"Document id: {receipt.document_id}")
    print(f"User:        {receipt.user_did}")
    print(f"Recovered {len(result.plaintext)} bytes into {output_dir}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else "downloads")))
