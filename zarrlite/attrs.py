import logging
from collections.abc import MutableMapping

from zarrlite.errors import ReadOnlyError
from zarrlite.storage import attrs_key, ensure_store
from zarrlite.sync import lock_for

logger = logging.getLogger(__name__)


class Attributes(MutableMapping):
    """Mutable view of the user attributes persisted in a store's ``.zattrs``.

    Reads go through :meth:`BaseStore.get_attributes`. Every modification
    reads the current attributes from the store, applies the change and writes
    the whole mapping back, holding the synchronizer's ``.zattrs`` lock if one
    is given.

    Parameters
    ----------
    store : MutableMapping
        Store holding the array.
    read_only : bool, optional
        If True, attributes cannot be modified.
    cache : bool, optional
        If True (default), the last mapping read or written is reused for reads.
    synchronizer : Synchronizer, optional
        Lock provider shared by all writers of the array.
    on_change : callable, optional
        Called with the new attributes dict after every write or refresh.

    """

    def __init__(self, store, read_only=False, cache=True, synchronizer=None,
                 on_change=None):
        self.store = ensure_store(store)
        self.read_only = read_only
        self.cache = cache
        self.synchronizer = synchronizer
        self._on_change = on_change
        self._cached = None

    def _load(self):
        d = self.store.get_attributes()
        if self.cache:
            self._cached = d
        return d

    def asdict(self):
        """Current attributes as a plain dict."""
        if self._cached is not None and self.cache:
            return self._cached
        return self._load()

    def refresh(self):
        """Drop cached attributes and read them again from the store."""
        d = self._load()
        if self._on_change is not None:
            self._on_change(d)

    def _modify(self, change):
        if self.read_only:
            raise ReadOnlyError()
        with lock_for(self.synchronizer, attrs_key):
            d = self.store.get_attributes()
            change(d)
            self.store[attrs_key] = self.store._metadata_class.encode_attributes(d)
        logger.debug('updated attributes of %r', self.store.name)
        if self.cache:
            self._cached = d
        if self._on_change is not None:
            self._on_change(d)

    def __getitem__(self, key):
        return self.asdict()[key]

    def __contains__(self, key):
        return key in self.asdict()

    def __setitem__(self, key, value):
        self._modify(lambda d: d.__setitem__(key, value))

    def __delitem__(self, key):
        self._modify(lambda d: d.__delitem__(key))

    # noinspection PyMethodOverriding
    def update(self, *args, **kwargs):
        """Change several attributes with a single store write."""
        self._modify(lambda d: d.update(*args, **kwargs))

    def put(self, d):
        """Replace all attributes with the items of `d`."""
        new = dict(d)

        def replace(current):
            current.clear()
            current.update(new)

        self._modify(replace)

    def keys(self):
        return self.asdict().keys()

    def __iter__(self):
        return iter(self.asdict())

    def __len__(self):
        return len(self.asdict())

    def __repr__(self):
        return f"<{type(self).__name__} {self.asdict()!r}>"
