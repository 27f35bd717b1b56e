# discovery/tasks.py
import asyncio
import threading
import time
from typing import Callable, List, Optional

import structlog
from django.conf import settings
from django.db import connection

from engine.pipeline import build_leads, is_saturated, search_cell_queries
from engine.places import GooglePlacesSource, PlaceSource, PlacesError
from . import lifecycle
from .errors import DiscoveryError, UpstreamFailure
from .models import Cell

log = structlog.get_logger()


def default_source() -> GooglePlacesSource:
    return GooglePlacesSource(
        api_key=settings.GOOGLE_PLACES_API_KEY,
        max_pages=settings.DISCOVERY_PLACES_MAX_PAGES,
        timeout=settings.DISCOVERY_PLACES_TIMEOUT,
        page_token_delay=settings.DISCOVERY_PAGE_TOKEN_DELAY,
    )


def run_cell_search(cell_id: int, source: Optional[PlaceSource] = None,
                    claimed_from: Optional[str] = None) -> dict:
    """
    One full search round for a leaf cell:
    claim → fan out all grid queries → record result (or restore on failure).

    Pass claimed_from when the caller already claimed the cell.
    """
    if claimed_from is None:
        claimed_from = lifecycle.claim_cell_for_search(cell_id)

    try:
        cell = lifecycle.get_cell(cell_id)
        grid = cell.grid
        if source is None:
            source = default_source()

        started = time.monotonic()
        round_result = asyncio.run(
            search_cell_queries(source, list(grid.queries), cell.bounds)
        )

        saturated = is_saturated(
            round_result['query_saturation'],
            settings.DISCOVERY_SATURATION_THRESHOLD,
        )
        leads = build_leads(
            round_result['places'],
            depth=cell.depth,
            region=grid.region,
            province=grid.province,
            source_name=source.name,
        )
        written = lifecycle.record_search_result(
            cell_id,
            status=Cell.SATURATED if saturated else Cell.SEARCHED,
            result_count=round_result['result_count'],
            query_saturation=round_result['query_saturation'],
            leads=leads,
        )
    except PlacesError as e:
        lifecycle.restore_status(cell_id, claimed_from)
        log.error("cell.search.failed", cell_id=cell_id, error=str(e))
        raise UpstreamFailure(str(e)) from e
    except Exception as e:
        lifecycle.restore_status(cell_id, claimed_from)
        log.error("cell.search.failed", cell_id=cell_id, error=str(e))
        raise

    log.info("cell.search.complete",
             cell_id=cell_id,
             saturated=saturated,
             new_leads=written['inserted'],
             elapsed=round(time.monotonic() - started, 1))
    return {
        'cell_id': cell_id,
        'status': Cell.SATURATED if saturated else Cell.SEARCHED,
        'result_count': round_result['result_count'],
        'query_saturation': round_result['query_saturation'],
        'new_leads': written['inserted'],
        'duplicates_skipped': written['skipped'],
        'total_in_database': written['total_in_database'],
    }


def start_cell_search(cell_id: int, source: Optional[PlaceSource] = None) -> str:
    """
    Claims the cell right away (so a double click is rejected) and runs
    the rest of the round in a background thread.
    """
    claimed_from = lifecycle.claim_cell_for_search(cell_id)

    def run_in_thread():
        try:
            run_cell_search(cell_id, source, claimed_from=claimed_from)
        except Exception as e:
            log.error("cell.search.background_failed", cell_id=cell_id, error=str(e))
        finally:
            connection.close()

    threading.Thread(target=run_in_thread, daemon=True).start()
    return claimed_from


def search_cells_sequentially(cell_ids: List[int], delay_s: float = 1.0,
                              source_factory: Optional[Callable[[], PlaceSource]] = None) -> List[dict]:
    """
    Cross-cell work is one cell at a time with a pause in between,
    to stay inside the place API quota. A failed cell is reported and
    skipped, the rest still run.
    """
    results = []
    for i, cell_id in enumerate(cell_ids):
        if i and delay_s > 0:
            time.sleep(delay_s)
        try:
            results.append(run_cell_search(
                cell_id, source_factory() if source_factory else None
            ))
        except DiscoveryError as e:
            log.warning("cell.search.skipped", cell_id=cell_id, error=str(e))
            results.append({'cell_id': cell_id, 'error': str(e)})
    return results
