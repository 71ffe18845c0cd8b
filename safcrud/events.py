# Domain events, sent after the transaction has been committed
#
# from safcrud.events import entity_created
#
# @entity_created.connect_via(Product)
# def on_product_created(sender, instance, **kwargs):
#     ...
#
from blinker import Namespace
import safcrud

_signals = Namespace()

entity_created = _signals.signal("entity-created")
entity_updated = _signals.signal("entity-updated")
entity_deleted = _signals.signal("entity-deleted")


def send_event(signal, model, instance) -> None:
    """
    Notify the receivers of `signal`, a failing receiver is logged and doesn't affect the others
    :param signal: one of the signals above
    :param model: sender
    :param instance: the created/updated/deleted instance
    """
    for receiver in signal.receivers_for(model):
        try:
            receiver(model, instance=instance)
        except Exception as exc:
            safcrud.log.exception(exc)
            safcrud.log.error(f"Receiver {getattr(receiver, '__name__', receiver)} failed for {signal.name} ({model.__name__})")
