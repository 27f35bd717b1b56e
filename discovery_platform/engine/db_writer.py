import structlog

from .dedup import dedup_key

log = structlog.get_logger()


def insert_discovered_leads(leads: list) -> dict:
    """
    Writes newly discovered leads, skipping anything already known.

    A lead is a duplicate when its dedup key (normalized name + city) or its
    external place id matches a stored lead, or an earlier lead in the same
    batch. Only the inserted ones count towards the grid total, so
    re-searching a cell never double-counts.

    Call inside the caller's transaction; returns
    {'inserted', 'skipped', 'total_in_database'}.
    """
    from discovery.models import Lead

    keyed = []
    for lead in leads:
        if not lead.get('name'):
            continue
        keyed.append((dedup_key(lead['name'], lead.get('city', '')), lead))

    keys = {k for k, _ in keyed}
    place_ids = {l.get('place_id') for _, l in keyed if l.get('place_id')}

    seen_keys = set(
        Lead.objects.filter(dedup_key__in=keys).values_list('dedup_key', flat=True)
    )
    seen_place_ids = set(
        Lead.objects.filter(place_id__in=place_ids).values_list('place_id', flat=True)
    )

    batch = []
    skipped = len(leads) - len(keyed)
    for key, lead in keyed:
        place_id = lead.get('place_id') or ''
        if key in seen_keys or (place_id and place_id in seen_place_ids):
            skipped += 1
            continue
        seen_keys.add(key)
        if place_id:
            seen_place_ids.add(place_id)
        batch.append(Lead(dedup_key=key, **lead))

    inserted = 0
    if batch:
        # dedup_key is unique; a row written by a concurrent round since the
        # lookup above is dropped by the database and counted as skipped
        before = Lead.objects.count()
        Lead.objects.bulk_create(batch, ignore_conflicts=True)
        total = Lead.objects.count()
        inserted = total - before
        skipped += len(batch) - inserted
    else:
        total = Lead.objects.count()

    result = {
        'inserted': inserted,
        'skipped': skipped,
        'total_in_database': total,
    }
    log.info("leads.written", **result)
    return result
