"""Retrieval service loop: claim a request, raise the rate, run the pipeline."""

import time
from typing import Callable, Optional, Set

from archiver.encryptor import GpgEncryptor
from archiver.ledger import IndexLedger
from common.config import Config
from common.constants import GIB, REQUEST_IDLE_SECONDS
from common.exceptions import CapacityError, ColdVaultError
from common.logging_config import get_logger
from retriever.pipeline import RetrievalPipeline
from retriever.rate_policy import RatePolicyController, RateState
from retriever.request_queue import RequestQueue
from vault.glacier_client import GlacierClient
from vault.service import StorageService

logger = get_logger(__name__)


class RetrievalService:
    """
    Serves retrieval requests one at a time.

    The RateState returned by each ensure_rate call is threaded into the
    next, so the policy only rises within a billing month.
    """

    def __init__(
        self,
        queue: RequestQueue,
        rate_controller: RatePolicyController,
        pipeline: RetrievalPipeline,
        idle_interval: float = REQUEST_IDLE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.queue = queue
        self.rate_controller = rate_controller
        self.pipeline = pipeline
        self.idle_interval = idle_interval
        self.sleep = sleep
        self.rate_state = RateState()
        self.running = False
        self.deferred: Set[str] = set()

    def start(self) -> None:
        """Establish the minimum retrieval rate before serving requests."""
        minimum = self.rate_controller.min_rate_gib * GIB
        self.rate_state = self.rate_controller.ensure_rate(self.rate_state, minimum)
        self.running = True
        logger.info("Retrieval service started")

    def stop(self) -> None:
        self.running = False
        logger.info("Retrieval service stopped")

    def run_once(self) -> bool:
        """
        Serve at most one request.

        A request that does not fit on disk is released and skipped until
        the queue next runs dry, so run_forever idles before trying it again.

        Returns:
            True if a request was claimed, False if nothing is claimable
        """
        request = self.queue.claim_next(skip=self.deferred)
        if request is None:
            return False

        try:
            self.pipeline.check_capacity(request.size)
            rate_gib = self.rate_controller.target_rate(request.size, request.rate_gib, request.deadline)
            logger.info(f"Retrieving {request.name} at {rate_gib} GiB/hour")
            self.rate_state = self.rate_controller.ensure_rate(self.rate_state, rate_gib * GIB)
            target = self.pipeline.retrieve(request)
        except CapacityError as e:
            logger.warning(f"Not enough space to retrieve {request.name}: {e}")
            self.queue.release(request)
            self.deferred.add(request.name)
        except ColdVaultError as e:
            logger.error(f"Retrieval of {request.name} failed: {e}")
        except OSError as e:
            logger.error(f"Retrieval of {request.name} aborted: {e}", exc_info=True)
        else:
            logger.info(f"Retrieved {request.name} to {target}")
        return True

    def run_forever(self) -> None:
        """Serve requests until stop() is called, sleeping while the queue is empty."""
        if not self.running:
            self.start()
        while self.running:
            if not self.run_once():
                if self.deferred:
                    logger.info(f"{len(self.deferred)} request(s) deferred until the next pass")
                    self.deferred.clear()
                self.sleep(self.idle_interval)


def build_retrieval_service(config: Config, service: Optional[StorageService] = None) -> RetrievalService:
    """
    Wire a RetrievalService from configuration.

    Args:
        config: Loaded configuration
        service: Storage service (defaults to a GlacierClient for the configured vault)
    """
    if service is None:
        service = GlacierClient(config)

    ledger = IndexLedger(config.get_path('ledger_path'), config.get_path('ledger_mirror_path'))
    loaded = ledger.load()
    logger.info(f"Loaded {loaded} ledger records")

    request_dir = config.get_path('request_dir')
    decryptor = GpgEncryptor(config.get_path('passphrase_file'), config.get('gpg_binary', 'gpg'))
    pipeline = RetrievalPipeline(
        service,
        decryptor,
        request_dir=request_dir,
        work_dir=request_dir / '.work',
        block_size=config.get_int('block_size'),
        poll_interval=config.get_float('poll_interval'),
    )
    rate_controller = RatePolicyController(
        service,
        min_rate_gib=config.get_int('min_rate_gib'),
        max_rate_gib=config.get_int('max_rate_gib'),
        overhead_hours=config.get_float('overhead_hours'),
        propagation_delay=config.get_float('propagation_delay'),
    )
    return RetrievalService(RequestQueue(request_dir, ledger), rate_controller, pipeline)
