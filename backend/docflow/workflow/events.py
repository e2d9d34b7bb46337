"""Post-commit transition notifications.

Receivers are connected with ``document_transitioned.connect(fn)`` and are
called as ``fn(sender, document=..., transition=..., actor=..., result=...)``
where ``sender`` is the engine. Delivery mechanics (mail, webhooks) live in
the receivers, not here.
"""
import logging

from blinker import Namespace

log = logging.getLogger(__name__)

_signals = Namespace()

document_created = _signals.signal('document-created')
document_transitioned = _signals.signal('document-transitioned')


def publish(signal, sender, **kwargs) -> None:
    """Send ``signal``; a failing receiver is logged and never undoes the committed change."""
    for receiver in signal.receivers_for(sender):
        try:
            receiver(sender, **kwargs)
        except Exception:  # noqa: BLE001
            log.exception('receiver %r failed for %s', receiver, signal.name)
