"""
Centralized constants for the engine and scheduler.

Change job IDs, sentinels or collection names here instead of scattering literals
across the tracker, store and routes.
"""

# Ledger sentinel for "no target receiver" / "not picked yet"
NO_TARGET = "0x0000000000000000000000000000000000000000"
NO_PICKER = NO_TARGET

# Placeholder ids for optimistic records. Ledger ids never carry this prefix.
LOCAL_ID_PREFIX = "local_"

# History collections
THROWN = "thrown"
PICKED = "picked"
COLLECTIONS = (THROWN, PICKED)

# Scheduler job IDs (must match ids used in scheduler.counter_job)
COUNTER_REFRESH_JOB_ID = "counter_refresh"

# Ledger read/write operation names (must match contracts.abi)
OP_THROW = "throwBottle"
OP_PICK = "pickBottle"
OP_PICK_TARGETED = "pickTargetedBottle"
READ_AVAILABLE_COUNT = "getAvailableBottleCount"
READ_TARGETED_COUNT = "getMyTargetedBottleCount"
READ_BOTTLE_COUNT = "getBottleCount"
READ_BOTTLE_DETAILS = "getBottleDetails"

# Events emitted by the contract
EVENT_BOTTLE_THROWN = "BottleThrown"
EVENT_BOTTLE_PICKED = "BottlePicked"

# Tracker: extra seconds on top of the gateway timeout before the engine gives up waiting
INCLUSION_WAIT_GRACE_SECONDS = 5.0
# Tracker: how many finished operations are kept for status reporting
RECENT_OPERATIONS_LIMIT = 50
# Re-wait on a stored tx hash when the user asks to resolve an uncertain throw
RECONCILE_WAIT_SECONDS = 10.0
