from reconciler.database import SessionLocal
from reconciler.notifications import build_dispatcher
from reconciler.reconcile import Reconciler
from reconciler.store import IntentStore, OrderStore
from reconciler.transitions import TransitionEngine


def intent_store() -> IntentStore:
    return IntentStore(SessionLocal)


def order_store() -> OrderStore:
    return OrderStore(SessionLocal)


def build_reconciler() -> Reconciler:
    return Reconciler(TransitionEngine(SessionLocal), OrderStore(SessionLocal), build_dispatcher())
