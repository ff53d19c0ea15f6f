#!/usr/bin/env python3
"""Print ledger debug: bottle counts and the most recent bottles (id, sender, picked, picker).

Run from backend: python scripts/ledger_debug.py [limit]

Or with backend running: curl -s "http://127.0.0.1:8000/bottles/ledger?limit=20" | jq
"""
import asyncio
import sys
from pathlib import Path

backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from driftbottle.config import settings
from driftbottle.core.constants import NO_PICKER, READ_AVAILABLE_COUNT, READ_BOTTLE_COUNT
from driftbottle.core.errors import BottleEngineError
from driftbottle.services.ledger.client import Web3LedgerGateway
from driftbottle.services.ledger.scan import LedgerScanner


async def run(limit: int) -> int:
    gateway = Web3LedgerGateway(settings)
    scanner = LedgerScanner(gateway, depth=limit)
    try:
        total = await gateway.query(READ_BOTTLE_COUNT)
        available = await gateway.query(READ_AVAILABLE_COUNT)
        rows = await scanner.scan_recent()
    except BottleEngineError as e:
        print(f"FAIL {e.kind.value}: {e.detail or e.message}")
        return 1

    print("Ledger debug")
    print("============")
    print(f"Contract:   {gateway.contract_address}")
    print(f"RPC:        {settings.rpc_url}")
    print(f"Total:      {total}")
    print(f"Available:  {available}")
    print()
    print(f"Most recent {len(rows)} bottles (newest first):")
    for row in rows:
        picked = f"picked by {row.picker}" if row.is_picked and row.picker != NO_PICKER else "floating"
        print(f"  #{row.index:<5} {row.id:<20} from {row.sender}  {picked}")
    return 0


def main():
    limit = int(sys.argv[1]) if len(sys.argv) > 1 else 20
    return asyncio.run(run(limit))


if __name__ == "__main__":
    sys.exit(main())
