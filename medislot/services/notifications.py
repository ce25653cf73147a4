import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, party_id: int, event: str, payload: dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Default notifier; e-mail and push delivery live outside this service."""

    def notify(self, party_id: int, event: str, payload: dict[str, Any]) -> None:
        logger.info('Notify user %s: %s %s', party_id, event, payload)


def notify_parties(notifier: Notifier, party_ids: list[int], event: str, payload: dict[str, Any]) -> None:
    for party_id in party_ids:
        try:
            notifier.notify(party_id, event, payload)
        except Exception:
            logger.exception('Failed to notify user %s about %s', party_id, event)
