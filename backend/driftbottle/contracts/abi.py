"""DriftingBottle contract ABI: the read/write interface the engine talks to, plus its events."""

_BOTTLE_TUPLE = {
    "components": [
        {"internalType": "string", "name": "id", "type": "string"},
        {"internalType": "string", "name": "content", "type": "string"},
        {"internalType": "address", "name": "sender", "type": "address"},
        {"internalType": "address", "name": "targetReceiver", "type": "address"},
        {"internalType": "uint256", "name": "timestamp", "type": "uint256"},
        {"internalType": "bool", "name": "isPicked", "type": "bool"},
        {"internalType": "address", "name": "picker", "type": "address"},
    ],
    "internalType": "struct DriftingBottle.Bottle",
    "name": "",
    "type": "tuple",
}


def _view(name: str, outputs: list[dict], inputs: list[dict] | None = None) -> dict:
    return {
        "inputs": inputs or [],
        "name": name,
        "outputs": outputs,
        "stateMutability": "view",
        "type": "function",
    }


def _uint_out() -> list[dict]:
    return [{"internalType": "uint256", "name": "", "type": "uint256"}]


BOTTLE_THROWN_EVENT = {
    "anonymous": False,
    "inputs": [
        {"indexed": False, "internalType": "string", "name": "bottleId", "type": "string"},
        {"indexed": True, "internalType": "address", "name": "sender", "type": "address"},
        {"indexed": True, "internalType": "address", "name": "targetReceiver", "type": "address"},
        {"indexed": False, "internalType": "uint256", "name": "timestamp", "type": "uint256"},
    ],
    "name": "BottleThrown",
    "type": "event",
}

BOTTLE_PICKED_EVENT = {
    "anonymous": False,
    "inputs": [
        {"indexed": False, "internalType": "string", "name": "bottleId", "type": "string"},
        {"indexed": False, "internalType": "string", "name": "content", "type": "string"},
        {"indexed": True, "internalType": "address", "name": "sender", "type": "address"},
        {"indexed": False, "internalType": "uint256", "name": "timestamp", "type": "uint256"},
        {"indexed": True, "internalType": "address", "name": "picker", "type": "address"},
    ],
    "name": "BottlePicked",
    "type": "event",
}

CONTRACT_ABI: list[dict] = [
    {
        "inputs": [
            {"internalType": "string", "name": "_content", "type": "string"},
            {"internalType": "address", "name": "_targetReceiver", "type": "address"},
        ],
        "name": "throwBottle",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "pickBottle",
        "outputs": [_BOTTLE_TUPLE],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "pickTargetedBottle",
        "outputs": [_BOTTLE_TUPLE],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    _view("getBottleCount", _uint_out()),
    _view("getAvailableBottleCount", _uint_out()),
    # Counts bottles targeted at msg.sender, so callers pass `from`
    _view("getMyTargetedBottleCount", _uint_out()),
    _view(
        "getBottleDetails",
        [
            {"internalType": "string", "name": "id", "type": "string"},
            {"internalType": "address", "name": "sender", "type": "address"},
            {"internalType": "bool", "name": "isPicked", "type": "bool"},
            {"internalType": "address", "name": "picker", "type": "address"},
        ],
        inputs=[{"internalType": "uint256", "name": "index", "type": "uint256"}],
    ),
    BOTTLE_THROWN_EVENT,
    BOTTLE_PICKED_EVENT,
]

EVENT_ABIS: list[dict] = [e for e in CONTRACT_ABI if e.get("type") == "event"]
