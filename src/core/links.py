"""
Dependency edge extraction.

Only predecessor lists are read: a successor link is the inverse of some
other record's predecessor link, so materialising both would duplicate edges.
"""

import logging
from typing import AbstractSet, Iterable, List, Set, Tuple

from src.core.store import DependencyEdge, RowId, SourceRowId, WorkRecord

logger = logging.getLogger(__name__)


def extract_links(row_ids: AbstractSet[RowId], records: Iterable[WorkRecord]) -> List[DependencyEdge]:
    """
    Build finish-to-start edges between rows present in one conversion.

    For each record R (in iteration order) and each predecessor P of R, an
    edge P -> R is emitted iff both are row ids. Repeated pairs, repeated
    records and self-references are skipped.

    Parameters
    ----------
    row_ids : AbstractSet[RowId]
        Row ids produced by the hierarchy assembler
    records : Iterable[WorkRecord]
        Source records in input order

    Returns
    -------
    List[DependencyEdge]
        Edges with ids counting from 1 in emission order
    """
    edges: List[DependencyEdge] = []
    seen_records: Set[int] = set()
    seen_pairs: Set[Tuple[int, int]] = set()
    skipped = 0

    for record in records:
        if record.id in seen_records:
            continue
        seen_records.add(record.id)

        target = SourceRowId(record.id)
        if target not in row_ids:
            continue

        for predecessor_id in record.predecessors:
            if predecessor_id == record.id:
                continue
            source = SourceRowId(predecessor_id)
            if source not in row_ids:
                skipped += 1
                continue
            pair = (predecessor_id, record.id)
            if pair in seen_pairs:
                continue
            seen_pairs.add(pair)
            edges.append(
                DependencyEdge(id=len(edges) + 1, source_row_id=source, target_row_id=target)
            )

    logger.info(f"Extracted {len(edges)} dependency edges ({skipped} predecessors outside working set)")
    return edges
