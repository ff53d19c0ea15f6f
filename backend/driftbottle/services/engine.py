"""
Engine context: the one object holding the process-wide state (identity, history, counters)
and the components allowed to touch it. Created at startup and passed to whoever needs it;
nothing here is a module-level global.

Write capability per component:
  - tracker      -> history store (sole writer), counter refresh trigger
  - counters     -> counter snapshot
  - presentation -> read-only views (history.view_for, counters.snapshot)
"""
import logging

from apscheduler.schedulers.base import BaseScheduler

from driftbottle.config import Settings, settings as default_settings
from driftbottle.core.identity import IdentitySession
from driftbottle.db.base import Base
from driftbottle.db.session import make_engine, make_session_factory
from driftbottle.scheduler.counter_job import register_counter_job
from driftbottle.services.counters import CounterSynchronizer
from driftbottle.services.events import EventDecoder
from driftbottle.services.history_store import BlobStore, HistoryStore, SqlBlobStore
from driftbottle.services.ledger.base import LedgerGateway
from driftbottle.services.ledger.client import Web3LedgerGateway
from driftbottle.services.ledger.scan import LedgerScanner
from driftbottle.services.tracker import OptimisticTransactionTracker

logger = logging.getLogger(__name__)


class BottleEngine:
    def __init__(
        self,
        *,
        gateway: LedgerGateway,
        blob_store: BlobStore,
        config: Settings | None = None,
        contract_address: str | None = None,
        identity: IdentitySession | None = None,
    ) -> None:
        self.config = config or default_settings
        self.identity = identity or IdentitySession()
        self.gateway = gateway
        self.decoder = EventDecoder(contract_address=contract_address)
        self.history = HistoryStore(blob_store, name=self.config.history_store_name)
        self.counters = CounterSynchronizer(
            gateway,
            self.identity,
            interval_seconds=self.config.counter_poll_interval_seconds,
        )
        self.scanner = LedgerScanner(gateway, depth=self.config.ledger_scan_depth)
        self.tracker = OptimisticTransactionTracker(
            gateway,
            self.decoder,
            self.history,
            self.counters,
            self.identity,
            scanner=self.scanner,
            confirmations_required=self.config.confirmations_required,
            inclusion_timeout=self.config.inclusion_timeout_seconds,
            max_content_length=self.config.max_content_length,
        )

    def start(self, scheduler: BaseScheduler) -> None:
        """Register background jobs. The scheduler is owned (started/stopped) by the caller."""
        register_counter_job(scheduler, self.counters)


def build_engine(config: Settings | None = None) -> BottleEngine:
    """Production wiring: web3 gateway + SQL-backed history."""
    config = config or default_settings
    db_engine = make_engine(config.database_url)
    Base.metadata.create_all(bind=db_engine)
    gateway = Web3LedgerGateway(config)
    engine = BottleEngine(
        gateway=gateway,
        blob_store=SqlBlobStore(make_session_factory(db_engine)),
        config=config,
        contract_address=gateway.contract_address,
        identity=IdentitySession(pinned_to=gateway.signer_address),
    )
    logger.info("Bottle engine ready (contract %s, rpc %s)", gateway.contract_address, config.rpc_url)
    if gateway.signer_address:
        logger.info("Writes signed locally by %s; identity pinned to it", gateway.signer_address)
    return engine
