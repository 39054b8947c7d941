"""
Per-run context threaded explicitly through every pipeline stage.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from core.logging import get_run_logger


@dataclass
class RunContext:
    """
    Everything a stage needs to know about the run it belongs to.

    Attributes:
        source: Source identifier (``SourceKind`` value)
        run_id: Short identifier used in every log line of the run
        logger: Logger adapter bound to source and run_id
        cancel_event: Set by the caller to stop the run between pages/batches
        today: Reference date for recency and "not in the future" checks
    """

    source: str
    run_id: str
    logger: logging.LoggerAdapter
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    today: date = field(default_factory=date.today)

    @classmethod
    def create(
        cls,
        source: str,
        base_logger: Optional[logging.Logger] = None,
        today: Optional[date] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> "RunContext":
        run_id = uuid.uuid4().hex[:8]
        return cls(
            source=source,
            run_id=run_id,
            logger=get_run_logger(source, run_id, base_logger),
            cancel_event=cancel_event or asyncio.Event(),
            today=today or date.today(),
        )

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self):
        self.cancel_event.set()
