from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Optional


@dataclass(frozen=True)
class PartialSuccess:
    """
    The primary effect of an operation happened but a secondary step did not.

    Returned, never raised: callers inspect it and decide whether to retry
    or to run the duplicate sweep.
    """

    step: str
    message: str
    subscription_id: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)
