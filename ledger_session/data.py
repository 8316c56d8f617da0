import uuid
from typing import Union, Optional, Any
from datetime import datetime, timezone
from collections.abc import Iterator, Mapping, MutableMapping
import jsonpickle
from jsonpickle.unpickler import loadclass
from datamodel import BaseModel
from .conf import (
    SESSION_KEY,
    SESSION_ID
)


class ModelHandler(jsonpickle.handlers.BaseHandler):
    """ModelHandler.
    This class can handle with serializable Data Models.
    """
    def flatten(self, obj, data):
        data['__dict__'] = self.context.flatten(obj.__dict__, reset=False)
        return data

    def restore(self, obj):
        module_and_type = obj['py/object']
        mdl = loadclass(module_and_type)
        cls = mdl.__new__(mdl) if hasattr(mdl, '__new__') else object.__new__(mdl)
        cls.__dict__ = self.context.restore(obj['__dict__'], reset=False)
        return cls

jsonpickle.handlers.registry.register(BaseModel, ModelHandler, base=True)


class Profile(BaseModel):
    """Local projection of the user's ledger profile."""
    public_name: Optional[str] = None
    avatar: Optional[str] = None
    cover: Optional[str] = None
    username: Optional[str] = None


class SessionData(MutableMapping[str, Any]):
    """Ledger session dict-like object.

    Holds the projection of the current identity: serializable state
    (bundle, username, profile, flags) lives in _data, live collaborators
    (bound ledger client, auth session) in _objects.

    Non-serializable objects (class instances, etc.) are automatically
    stored in _objects when assigned via session.key = value or session['key'] = value.
    """

    _data: Union[str, Any] = {}
    _objects: dict[str, Any] = {}

    # Internal attributes that should not be stored in _data or _objects
    _internal_attrs = frozenset({
        '_data', '_objects', '_changed', '_id_', '_new',
        '__created__', '_created', 'args'
    })

    def __init__(
        self,
        *args,
        data: Optional[Mapping[str, Any]] = None,
        new: bool = False,
        id: Optional[str] = None
    ) -> None:
        # Initialize internal storage first (before any attribute access)
        object.__setattr__(self, '_data', {})
        object.__setattr__(self, '_objects', {})
        # If new, mark as changed so it gets saved
        object.__setattr__(self, '_changed', True if new else False)
        # Unique ID:
        self._id_ = (data.get(SESSION_ID, None) if data else id) or uuid.uuid4().hex
        self._new = new if data != {} else True
        self.__created__ = datetime.now(timezone.utc)
        self._created = int(self.__created__.timestamp())
        if data is not None:
            self._data.update(data)
        self.args = args

    def __repr__(self) -> str:
        return (
            f'<Ledger-Session [logged_in:{self.logged_in}, bundle:{self.bundle}] '
            f'data={list(self._data.keys())}, objects={list(self._objects.keys())}>'
        )

    # --- Serialization helpers ---

    def _is_serializable(self, value: Any) -> bool:
        """Check if a value can be reliably serialized and restored with jsonpickle.

        Returns True for primitive types, dicts, lists, and known serializable models.
        Returns False for arbitrary class instances (clients, auth sessions).
        """
        if value is None or isinstance(value, (bool, int, float, str, bytes)):
            return True

        if isinstance(value, dict):
            return all(self._is_serializable(v) for v in value.values())
        if isinstance(value, (list, tuple, set, frozenset)):
            return all(self._is_serializable(v) for v in value)

        if isinstance(value, BaseModel):
            return True

        if isinstance(value, (datetime,)):
            return True

        return False

    def _get_value(self, key: str) -> Any:
        """Unified getter that checks both _objects and _data."""
        if key in self._objects:
            return self._objects[key]
        if key in self._data:
            return self._data[key]
        raise KeyError(key)

    def _set_value(self, key: str, value: Any) -> None:
        """Unified setter that routes to _objects or _data based on serializability."""
        if self._is_serializable(value):
            self._objects.pop(key, None)
            self._data[key] = value
            self._changed = True
        else:
            # in-memory only, not persisted
            self._data.pop(key, None)
            self._objects[key] = value

    def _del_value(self, key: str) -> None:
        """Unified delete that removes from both _objects and _data."""
        deleted = False
        if key in self._objects:
            del self._objects[key]
            deleted = True
        if key in self._data:
            del self._data[key]
            self._changed = True
            deleted = True
        if not deleted:
            raise KeyError(key)

    def _has_value(self, key: str) -> bool:
        """Check if key exists in either _objects or _data."""
        return key in self._objects or key in self._data

    # --- Properties ---

    @property
    def new(self) -> bool:
        return self._new

    @property
    def logon_time(self) -> datetime:
        return self.__created__

    @property
    def session_id(self) -> str:
        return self._id_

    @property
    def created(self) -> int:
        return self._created

    @property
    def bundle(self) -> Optional[str]:
        return self._data.get(SESSION_KEY)

    @property
    def identity(self) -> str:
        return self.bundle or self._id_

    @property
    def username(self) -> Optional[str]:
        return self._data.get('username')

    @property
    def profile(self) -> Optional[Profile]:
        return self._data.get('profile')

    @property
    def logged_in(self) -> bool:
        return bool(self._data.get('logged_in', False))

    @property
    def initialized(self) -> bool:
        return bool(self._data.get('initialized', False))

    @property
    def has_error(self) -> bool:
        return bool(self._data.get('has_error', False))

    @property
    def client(self) -> Optional[Any]:
        return self._objects.get('client')

    @property
    def empty(self) -> bool:
        return not bool(self._data) and not bool(self._objects)

    @property
    def is_changed(self) -> bool:
        return self._changed

    def changed(self) -> None:
        self._changed = True

    def session_data(self) -> dict:
        """Return only serializable data (for persistence)."""
        return self._data

    def session_objects(self) -> dict:
        """Return in-memory objects (not persisted)."""
        return self._objects

    def invalidate(self) -> None:
        """Clear all session data and in-memory objects."""
        self._changed = True
        self._data = {}
        self._objects = {}

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._data) + len(self._objects)

    def __iter__(self) -> Iterator[str]:
        seen = set()
        for key in self._data:
            seen.add(key)
            yield key
        for key in self._objects:
            if key not in seen:
                yield key

    def __contains__(self, key: object) -> bool:
        return self._has_value(str(key))

    def __getitem__(self, key: str) -> Any:
        return self._get_value(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self._set_value(key, value)

    def __delitem__(self, key: str) -> None:
        self._del_value(key)

    def __getattr__(self, key: str) -> Any:
        # Avoid infinite recursion for internal attributes
        if key.startswith('_'):
            raise AttributeError(key)
        try:
            return self._get_value(key)
        except KeyError:
            raise AttributeError(key) from None

    def __setattr__(self, key: str, value: Any) -> None:
        # Handle internal attributes normally
        if key in self._internal_attrs or key.startswith('_'):
            object.__setattr__(self, key, value)
        else:
            self._set_value(key, value)

    def encode(self, obj: Any) -> str:
        """encode

            Encode an object using jsonpickle.
        Args:
            obj (Any): Object to be encoded using jsonpickle

        Raises:
            RuntimeError: Error converting data to json.

        Returns:
            str: json version of the data
        """
        try:
            return jsonpickle.encode(obj)
        except Exception as err:
            raise RuntimeError(err) from err

    def decode(self, key: str) -> Any:
        """decode.

            Decoding a Session Key using jsonpickle.
        Args:
            key (str): key name.

        Raises:
            RuntimeError: Error converting data from json.

        Returns:
            Any: object converted.
        """
        try:
            value = self._data[key]
            return jsonpickle.decode(value)
        except KeyError:
            return None
        except Exception as err:
            raise RuntimeError(err) from err

    def snapshot(self) -> str:
        """Encode the serializable projection (never the live objects)."""
        return self.encode(self._data)
