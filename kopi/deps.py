"""
deps.py – Dependency Injection: singleton service instances.
Built once at import; the lifespan in main.py starts and stops them.
"""
from .config import Settings
from .core.cache import OfflineCache
from .core.catalog import CatalogService
from .core.feed import ChangeFeed
from .core.lifecycle import OrderLifecycle
from .core.reconciler import Reconciler
from .core.store import PersistentStore
from .core.webhook import WebhookNotifier
from .handlers.kitchen_handler import KitchenHandler
from .models import WebhookSettings

settings = Settings.from_env()

# ── Core singletons ────────────────────────────────────────────────────────────

_feed       = ChangeFeed()
_store      = PersistentStore(settings.database_url, _feed, timeout=settings.remote_timeout)
_cache      = OfflineCache(settings.cache_dir)
_reconciler = Reconciler(_store, _feed, _cache)
_notifier   = WebhookNotifier(
    _store,
    defaults=WebhookSettings(url=settings.webhook_url, is_enabled=settings.webhook_enabled),
    timeout=settings.webhook_timeout,
)

# ── Service / handler singletons ───────────────────────────────────────────────

_lifecycle = OrderLifecycle(_store, _notifier)
_catalog   = CatalogService(_store)
_kitchen   = KitchenHandler(_reconciler)


# ── Getters (used by routes) ───────────────────────────────────────────────────

def get_store()      -> PersistentStore: return _store
def get_reconciler() -> Reconciler:      return _reconciler
def get_notifier()   -> WebhookNotifier: return _notifier
def get_lifecycle()  -> OrderLifecycle:  return _lifecycle
def get_catalog()    -> CatalogService:  return _catalog
def get_kitchen()    -> KitchenHandler:  return _kitchen
