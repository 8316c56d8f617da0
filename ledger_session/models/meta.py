"""
Meta Model — typed local objects backed by append-only ledger meta records.

A meta record is identified by (meta type, meta id) and accumulates
field-level updates over time. The current view of a record is the
aggregation of all of its updates in ledger order:
- later values override earlier ones per field
- the literal ``"null"`` clears a field

The ledger only stores strings, so every value is serialized before
submission (numbers as decimal text, compounds as canonical JSON).
"""
import logging
from functools import lru_cache
from typing import Any, Optional, Union
from collections.abc import Iterable, Mapping, Sequence

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..conf import PAGINATION_DEFAULTS, LedgerSettings
from ..exceptions import ConfigurationError
from ..identity import random_string
from ..ledger import LedgerClient, response_payload

logger = logging.getLogger("ledger.meta")

NULL_SENTINEL = 'null'
META_ID_LENGTH = 64

COMPARISONS = ('=', '=~')
CRITERIA = ('AND', 'OR')


# ---------------------------------------------------------------------------
# Type resolution
# ---------------------------------------------------------------------------

class TypeRegistry:
    """Maps logical model names to ledger meta types.

    The resolution policy is fixed at construction: strict registries
    raise on unknown names, lenient ones use the name unchanged.
    """

    def __init__(self, types: Mapping[str, str], strict: bool = True):
        self._types = dict(types)
        self._strict = strict

    @classmethod
    def from_settings(cls, settings: LedgerSettings) -> "TypeRegistry":
        return cls(settings.types, strict=settings.strict_types)

    @property
    def strict(self) -> bool:
        return self._strict

    def resolve(self, name: str) -> str:
        """Return the ledger meta type for a logical model name.

        Raises:
            ConfigurationError: If the name is not mapped and the
                registry is strict.
        """
        if not name:
            raise ConfigurationError("Model has no meta type name")
        try:
            return self._types[name]
        except KeyError:
            if self._strict:
                raise ConfigurationError(
                    f"No ledger meta type configured for model {name!r}"
                ) from None
            logger.warning("Meta type %r is not mapped; using it unchanged.", name)
            return name

    def __contains__(self, name: object) -> bool:
        return name in self._types


@lru_cache(maxsize=1)
def default_registry() -> TypeRegistry:
    """Process-wide registry built from the environment settings."""
    return TypeRegistry.from_settings(LedgerSettings.from_env())


# ---------------------------------------------------------------------------
# Query arguments
# ---------------------------------------------------------------------------

class MetaFilter(BaseModel):
    """Single field predicate of a meta query."""

    key: str
    value: str
    comparison: str = '='
    criterion: Optional[str] = None

    @field_validator("comparison")
    @classmethod
    def validate_comparison(cls, v: str) -> str:
        if v not in COMPARISONS:
            raise ValueError(f"Unsupported comparison: {v}")
        return v

    @field_validator("criterion")
    @classmethod
    def validate_criterion(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in CRITERIA:
            raise ValueError(f"Unsupported criterion: {v}")
        return v

    def to_dict(self) -> dict:
        return self.model_dump(exclude_none=True)


class QueryArgs(BaseModel):
    """Pagination and ordering of a plural meta query."""

    model_config = ConfigDict(populate_by_name=True)

    page: int = Field(default=PAGINATION_DEFAULTS['page'], ge=1)
    rows_per_page: int = Field(
        default=PAGINATION_DEFAULTS['rows_per_page'], ge=1, alias='rowsPerPage'
    )
    sort_by: str = Field(default=PAGINATION_DEFAULTS['sort_by'], alias='sortBy')
    descending: bool = PAGINATION_DEFAULTS['descending']

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class PaginatorInfo(BaseModel):
    """Pagination metadata reported by the ledger."""

    model_config = ConfigDict(populate_by_name=True)

    current_page: int = Field(default=1, alias='currentPage')
    total: int = 0


class SaveResult(BaseModel):
    """Outcome of a meta submission."""

    error: bool = False
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.error


class MetaQueryResult(BaseModel):
    """Instances returned by a plural query."""

    model_config = {"arbitrary_types_allowed": True}

    instances: list[Any] = Field(default_factory=list)
    paginator_info: Optional[PaginatorInfo] = None
    error: bool = False

    def __len__(self) -> int:
        return len(self.instances)


# ---------------------------------------------------------------------------
# Value handling
# ---------------------------------------------------------------------------

def _sort_position(event: Any) -> Optional[float]:
    if not isinstance(event, Mapping):
        return None
    created = event.get('createdAt')
    if created is None:
        return None
    try:
        return float(created)
    except (TypeError, ValueError):
        return None


def aggregate_metas(
    updates: Union[Iterable[Mapping[str, Any]], Mapping[str, Any], str, bytes, None]
) -> dict[str, Any]:
    """Fold field updates into the current value of each field.

    Args:
        updates: Update events ``{"key", "value", "createdAt"?}`` in
            ledger order, an already aggregated mapping, or their JSON
            text.

    Returns:
        Mapping of field name to current value. Fields whose last update
        is ``"null"`` (or None) are absent.

    When every event carries a numeric ``createdAt`` the events are
    stably sorted by it, so equal timestamps keep their input order.
    """
    if not updates:
        return {}
    if isinstance(updates, (str, bytes)):
        updates = orjson.loads(updates)
    if isinstance(updates, Mapping):
        events = [{'key': k, 'value': v} for k, v in updates.items()]
    else:
        events = list(updates)

    positions = [_sort_position(event) for event in events]
    if events and None not in positions:
        order = sorted(range(len(events)), key=lambda i: positions[i])
        events = [events[i] for i in order]

    current: dict[str, Any] = {}
    for event in events:
        key = event.get('key') if isinstance(event, Mapping) else None
        if not key:
            logger.warning("Skipping meta update without a key: %r", event)
            continue
        value = event.get('value')
        if value is None or value == NULL_SENTINEL:
            current.pop(key, None)
        else:
            current[key] = value
    return current


def serialize_meta_value(value: Any) -> str:
    """Convert a value into the string form accepted by the ledger.

    Raises:
        TypeError: If a compound value cannot be encoded as JSON.
    """
    if isinstance(value, str):
        return value
    if value is None:
        return NULL_SENTINEL
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (int, float)):
        return str(value)
    return orjson.dumps(value, option=orjson.OPT_SORT_KEYS).decode('utf-8')


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------

class MetaModel:
    """Base class for ledger-backed models.

    Subclasses set ``meta_type`` to the logical name resolved through
    the type registry.
    """

    meta_type: str = ''

    def __init__(
        self,
        raw: Optional[Mapping[str, Any]] = None,
        registry: Optional[TypeRegistry] = None,
    ):
        self.id: Optional[str] = None
        self.created_at: Optional[Any] = None
        self.metas: dict[str, Any] = {}
        self._registry = registry
        if raw:
            self.id = raw.get('id', raw.get('metaId'))
            self.created_at = raw.get('createdAt')
            metas = raw.get('metas', raw.get('metasJson'))
            if metas:
                self.load_metas(metas)

    def __repr__(self) -> str:
        return f'<{type(self).__name__} id={self.id!r} metas={list(self.metas)}>'

    @property
    def registry(self) -> TypeRegistry:
        return self._registry or default_registry()

    @classmethod
    def resolve_meta_type(cls, registry: Optional[TypeRegistry] = None) -> str:
        return (registry or default_registry()).resolve(cls.meta_type)

    def get_meta_type(self) -> str:
        return self.registry.resolve(self.meta_type)

    def load_metas(self, raw_metas: Any) -> None:
        """Replace the current view with the aggregation of ``raw_metas``."""
        self.metas = aggregate_metas(raw_metas)

    def to_dict(self) -> dict:
        return {'id': self.id, 'createdAt': self.created_at, 'metas': dict(self.metas)}

    # ------------------------------------------------------------------
    # Ledger I/O
    # ------------------------------------------------------------------

    @staticmethod
    async def _fetch(
        client: LedgerClient,
        meta_type: str,
        meta_id: Optional[str],
        filters: Sequence[MetaFilter] = (),
        query_args: Optional[QueryArgs] = None,
    ) -> Optional[dict]:
        try:
            return response_payload(
                await client.query_meta(
                    meta_type=meta_type,
                    meta_id=meta_id,
                    filters=[f.to_dict() for f in filters],
                    query_args=query_args.to_dict() if query_args else None,
                    latest=meta_id is not None,
                )
            )
        except Exception as err:
            logger.error(
                "Meta query failed: type=%s id=%s: %s", meta_type, meta_id, err
            )
            return None

    async def query(
        self,
        client: LedgerClient,
        meta_id: Optional[str] = None,
        meta_type: Optional[str] = None,
        filters: Sequence[MetaFilter] = (),
    ) -> bool:
        """Load the latest record of this model from the ledger.

        Returns:
            True if a record was found; transport failures count as not found.
        """
        meta_type = meta_type or self.get_meta_type()
        payload = await self._fetch(client, meta_type, meta_id or self.id, filters)
        instances = (payload or {}).get('instances') or []
        if not instances:
            return False
        instance = instances[0]
        try:
            metas = aggregate_metas(instance.get('metas', instance.get('metasJson')))
        except (AttributeError, TypeError, ValueError) as err:
            logger.error("Malformed meta record: type=%s: %s", meta_type, err)
            return False
        if meta_id:
            self.id = meta_id
            self.created_at = instance.get('createdAt')
        elif self.id is None:
            self.id = instance.get('id', instance.get('metaId'))
            self.created_at = instance.get('createdAt')
        self.metas = metas
        return True

    @classmethod
    async def find(
        cls,
        client: LedgerClient,
        meta_id: str,
        registry: Optional[TypeRegistry] = None,
        filters: Sequence[MetaFilter] = (),
    ) -> Optional["MetaModel"]:
        """Single record lookup by id; None when nothing was found."""
        model = cls(registry=registry)
        if await MetaModel.query(model, client, meta_id=meta_id, filters=filters):
            return model
        return None

    @classmethod
    async def query_all(
        cls,
        client: LedgerClient,
        meta_id: Optional[str] = None,
        meta_type: Optional[str] = None,
        filters: Sequence[MetaFilter] = (),
        query_args: Optional[QueryArgs] = None,
        registry: Optional[TypeRegistry] = None,
    ) -> MetaQueryResult:
        """Plural lookup with filters and optional pagination.

        Returns:
            The matching instances; ``paginator_info`` is only set when
            pagination was requested and the ledger reported a total.
            ``error`` is set when the ledger could not be queried.
        """
        meta_type = meta_type or cls.resolve_meta_type(registry)
        payload = await cls._fetch(client, meta_type, meta_id, filters, query_args)
        if payload is None:
            return MetaQueryResult(error=True)
        instances = []
        for raw in payload.get('instances') or []:
            try:
                instances.append(cls(raw, registry=registry))
            except (AttributeError, TypeError, ValueError) as err:
                logger.error("Dropping malformed meta record: type=%s: %s", meta_type, err)
        result = MetaQueryResult(instances=instances)
        info = payload.get('paginatorInfo', payload.get('paginationInfo'))
        if query_args and info and info.get('total'):
            result.paginator_info = PaginatorInfo.model_validate(info)
        return result

    async def save(
        self,
        client: LedgerClient,
        meta_id: Optional[str] = None,
        meta_type: Optional[str] = None,
        meta_data: Optional[Mapping[str, Any]] = None,
    ) -> SaveResult:
        """Submit field updates for this record.

        An existing model id wins over ``meta_id``; without either a
        new random id is generated. Without ``meta_data`` the current
        metas are submitted.

        Returns:
            SaveResult; failures never raise.
        """
        meta_type = meta_type or self.get_meta_type()
        if self.id:
            meta_id = self.id
        elif not meta_id:
            meta_id = random_string(META_ID_LENGTH)
        if not meta_data:
            meta_data = self.metas

        try:
            meta = {key: serialize_meta_value(value) for key, value in meta_data.items()}
            response = response_payload(
                await client.create_meta(meta_type=meta_type, meta_id=meta_id, meta=meta)
            )
        except Exception as err:
            logger.error("Meta save failed: type=%s id=%s: %s", meta_type, meta_id, err)
            return SaveResult(error=True, error_message=str(err))

        if not response.get('success'):
            logger.warning("Ledger rejected meta: type=%s id=%s", meta_type, meta_id)
            return SaveResult(error=True, error_message=response.get('message'))

        self.id = meta_id
        self.metas.update(meta)
        self.metas = aggregate_metas(self.metas)
        logger.debug("Meta saved: type=%s id=%s", meta_type, meta_id)
        return SaveResult()
