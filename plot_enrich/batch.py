"""
Batch enrichment runner

Pages plots from the source table by offset and enriches them with a
small pool of workers. Each worker takes the next plot from a shared
index, enriches it fully, then sleeps before taking another, which
keeps upstream services (Nominatim allows 1 req/s) within limits.
"""

import concurrent.futures
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .config import EnrichConfig, clamp_concurrency, get_config
from .models import LocationEnrichmentResponse
from .persistence import PlotStore
from .pipeline import enrich_location

EnrichFn = Callable[..., LocationEnrichmentResponse]


@dataclass
class BatchStats:
    processed: int = 0
    skipped: int = 0
    failed: int = 0


class BatchRunner:
    """
    Enrich every plot in the source table

    Usage:
        runner = BatchRunner(config, store)
        stats = runner.run()
    """

    def __init__(
        self,
        config: Optional[EnrichConfig] = None,
        store: Optional[PlotStore] = None,
        enrich_fn: Optional[EnrichFn] = None,
    ):
        self.config = config or get_config()
        self.batch_config = self.config.batch
        self.store = store
        self.enrich_fn = enrich_fn or enrich_location
        self.concurrency = clamp_concurrency(self.batch_config.concurrency)
        self._stats_lock = threading.Lock()
        self.stats = BatchStats()

    def _count(self, field: str) -> None:
        with self._stats_lock:
            setattr(self.stats, field, getattr(self.stats, field) + 1)

    def needs_enrichment(self, existing: Optional[Dict[str, Any]]) -> bool:
        if self.batch_config.force_refresh:
            return True
        return not (isinstance(existing, dict) and existing.get(self.batch_config.target_key) is not None)

    def process_plot(self, plot: Dict[str, Any]) -> bool:
        """Enrich one plot; True on success"""
        plot_id = str(plot["id"])
        store = not self.batch_config.dry_run
        try:
            response = self.enrich_fn(
                float(plot["latitude"]),
                float(plot["longitude"]),
                plot_id=plot_id,
                store_results=store,
                store=self.store if store else None,
            )
        except Exception as e:
            logger.error(f"✗ Error processing plot {plot_id}: {e}")
            return False

        if response.error:
            logger.error(f"✗ Plot {plot_id} failed: {response.error}")
            return False
        logger.info(f"✓ Plot {plot_id}: run={response.enrichments_run} failed={response.enrichments_failed}")
        return True

    def process_batch(self, plots: List[Dict[str, Any]]) -> None:
        """Workers pull from a shared, lock-protected index"""
        next_index = 0
        index_lock = threading.Lock()
        delay_s = self.batch_config.inter_plot_delay_ms / 1000

        def worker() -> None:
            nonlocal next_index
            while True:
                with index_lock:
                    if next_index >= len(plots):
                        return
                    plot = plots[next_index]
                    next_index += 1

                if self.process_plot(plot):
                    self._count("processed")
                else:
                    self._count("failed")
                if delay_s > 0:
                    time.sleep(delay_s)

        workers = min(self.concurrency, len(plots))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(worker) for _ in range(workers)]
            for future in futures:
                future.result()

    def run(self) -> BatchStats:
        """
        Page through all plots.

        Raises:
            ValueError: If no store is configured
        """
        if self.store is None:
            raise ValueError("BatchRunner needs a PlotStore to read plots")

        cfg = self.batch_config
        limit = cfg.dry_run_limit
        offset = 0

        logger.info(f"Starting batch enrichment: batch size={cfg.batch_size}, concurrency={self.concurrency}, delay={cfg.inter_plot_delay_ms}ms")
        if cfg.dry_run:
            logger.info(f"DRY RUN enabled; no database writes (limit: {limit})")

        while True:
            with self.store.connection() as conn:
                plots = self.store.fetch_plot_batch(conn, cfg.batch_size, offset)
                existing = self.store.get_existing_enrichment_map(conn, [p["id"] for p in plots])

            if not plots:
                logger.info("No more plots to process")
                break

            logger.info(f"=== Batch at offset {offset}: {len(plots)} plots ===")
            to_process = []
            for plot in plots:
                if self.needs_enrichment(existing.get(plot["id"])):
                    to_process.append(plot)
                else:
                    self._count("skipped")

            if limit is not None:
                remaining = limit - self.stats.processed - self.stats.failed
                to_process = to_process[:max(0, remaining)]

            if to_process:
                self.process_batch(to_process)
            else:
                logger.info(f"All {len(plots)} plots in this batch already have {cfg.target_key}")

            if limit is not None and self.stats.processed + self.stats.failed >= limit:
                logger.info(f"Dry run limit of {limit} reached")
                break
            if len(plots) < cfg.batch_size:
                break
            offset += cfg.batch_size

        logger.info(f"Batch complete: processed={self.stats.processed} skipped={self.stats.skipped} failed={self.stats.failed}")
        return self.stats
