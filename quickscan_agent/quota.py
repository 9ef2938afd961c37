from __future__ import annotations

import logging

from .db import Store, StoreError
from .errors import QuotaExceeded
from .models import LimitKind, LimitStatus

logger = logging.getLogger(__name__)


class QuotaLedger:
    """Counts prior records per identity and gates new ones against a ceiling.

    The count and the later insert are separate statements, so concurrent
    requests from one identity can overshoot the ceiling. Counting fails open:
    a store problem reads as zero.
    """

    def __init__(self, store: Store, limits: dict[LimitKind, int], *, contact_email: str) -> None:
        self.store = store
        self.limits = limits
        self.contact_email = contact_email

    def count(self, kind: LimitKind, key: str | None) -> int:
        if not key:
            return 0
        try:
            if kind == "scan":
                return self.store.count_scans(key)
            return self.store.count_expanded_reports(key)
        except StoreError as e:
            logger.warning("Quota count for %s unavailable, failing open: %s", kind, e)
            return 0

    def status(self, kind: LimitKind, key: str | None) -> LimitStatus:
        return LimitStatus(current_count=self.count(kind, key), max_limit=self.limits[kind], limit_type=kind)

    def check(self, kind: LimitKind, key: str | None) -> int:
        current = self.count(kind, key)
        maximum = self.limits[kind]
        if current >= maximum:
            logger.info("Quota reached for %s (%d/%d)", kind, current, maximum)
            raise QuotaExceeded(kind, current, maximum, self.contact_email)
        return current
