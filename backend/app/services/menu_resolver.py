"""
Menu resolver: find a menu by (branch_id, menu_name) or create it.

Creation is check-then-act.  Two guards keep one name mapped to one id:

- A per-batch cache: the second row naming the same new menu hits the cache
  instead of storage.
- A process-wide lock around lookup + id minting + insert, since ids are
  minted globally.  If the insert still fails (another process won), the
  name is looked up once more and the existing menu is returned.
"""

import logging
import threading
from typing import Optional, Protocol

from app.models.sales import Menu

logger = logging.getLogger(__name__)

_creation_lock = threading.Lock()


class MenuStore(Protocol):
    def find_by_name(self, branch_id: str, name: str) -> Optional[Menu]: ...
    def create(self, branch_id: str, name: str, price: int, menu_id: str) -> Menu: ...
    def next_sequential_id(self) -> str: ...


class MenuResolver:
    """
    Find-or-create menus for one ingestion batch.

    Create one resolver per batch; its cache must not outlive the batch.
    """

    def __init__(self, store: MenuStore, branch_id: str):
        self._store = store
        self._branch_id = branch_id
        self._cache: dict[str, Menu] = {}
        self.created: list[Menu] = []

    def resolve(self, menu_name: str, fallback_price: Optional[int] = None) -> tuple[Menu, bool]:
        """
        Return (menu, is_new) for *menu_name*.

        A newly created menu takes ``fallback_price`` as its price (0 when the
        triggering row carried none).  ``is_new`` is True only on the call that
        created the menu.
        """
        name = menu_name.strip()
        cached = self._cache.get(name)
        if cached is not None:
            return cached, False

        existing = self._store.find_by_name(self._branch_id, name)
        if existing is not None:
            self._cache[name] = existing
            return existing, False

        menu, is_new = self._create(name, fallback_price or 0)
        self._cache[name] = menu
        if is_new:
            self.created.append(menu)
        return menu, is_new

    def _create(self, name: str, price: int) -> tuple[Menu, bool]:
        with _creation_lock:
            # Re-check under the lock: another batch may have created it.
            existing = self._store.find_by_name(self._branch_id, name)
            if existing is not None:
                return existing, False

            menu_id = self._store.next_sequential_id()
            try:
                menu = self._store.create(self._branch_id, name, price, menu_id)
            except Exception:
                existing = self._store.find_by_name(self._branch_id, name)
                if existing is not None:
                    logger.info("Menu '%s' was created concurrently as %s", name, existing.menu_id)
                    return existing, False
                # The id may have been taken by another writer; mint once more.
                logger.warning("Insert of menu %s '%s' failed, retrying with a fresh id", menu_id, name)
                menu_id = self._store.next_sequential_id()
                menu = self._store.create(self._branch_id, name, price, menu_id)

        logger.info("Created menu %s '%s' (branch %s, price %d)", menu.menu_id, name, self._branch_id, price)
        return menu, True
