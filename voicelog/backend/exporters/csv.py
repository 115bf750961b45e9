"""CSV export for saved time entries."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Sequence

from ..forms import CandidateEntry

ENTRY_FIELDS = ("id", "date", "project_name", "hours", "description")


def render_entries_csv(
    entries: Iterable[CandidateEntry],
    fieldnames: Sequence[str] = ENTRY_FIELDS,
) -> str:
    """Render entries as CSV text with a header row.

    - Entries are rendered through ``to_dict()`` so dates come out as YYYY-MM-DD.
    - Fields an entry does not have (``id`` on unsaved entries) are left empty;
      keys not listed in ``fieldnames`` are dropped.
    """
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(fieldnames), extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for entry in entries:
        writer.writerow(entry.to_dict())
    return buf.getvalue()
