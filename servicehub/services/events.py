"""State-transition events.

Each lifecycle transition is emitted as one record on the ``servicehub.events``
logger. The event name is the message; the structured fields travel in
``extra`` so a JSON formatter or log shipper can pick them up.
"""

from __future__ import annotations

import logging

event_logger = logging.getLogger("servicehub.events")


def emit(event: str, **fields) -> None:
    event_logger.info(event, extra={"event": event, "fields": fields})
