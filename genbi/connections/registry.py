import hashlib
import logging
import threading
import uuid
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from .. import errors
from ..config import Settings, settings as default_settings
from ..engines import EngineAdapter, create_adapter
from ..models import ConnectionDescriptor, EngineKind, utcnow
from ..storage.database import UserDataStore
from .secrets import SecretStore


URL_SCHEMES = {
    EngineKind.MYSQL: ("mysql",),
    EngineKind.POSTGRES: ("postgres", "postgresql"),
}

REQUIRED_FIELDS = ("host", "database", "user")


class ConnectionRegistry:
    """Named connection descriptors and the pooled adapters behind them."""

    def __init__(
        self,
        store: UserDataStore,
        secrets: Optional[SecretStore] = None,
        config: Optional[Settings] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.secrets = secrets or SecretStore()
        self.config = config or default_settings
        self._adapters: Dict[str, EngineAdapter] = {}
        self._adhoc: "OrderedDict[str, EngineAdapter]" = OrderedDict()
        self._lock = threading.RLock()
        self._listeners: List[Callable[[str], None]] = []

    def subscribe(self, listener: Callable[[str], None]) -> None:
        """Call ``listener(connection_id)`` whenever a connection changes or goes away."""
        self._listeners.append(listener)

    def _notify(self, connection_id: str) -> None:
        for listener in self._listeners:
            listener(connection_id)

    # -- validation --------------------------------------------------------

    def _validate(self, engine: EngineKind, params: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[str]]:
        """Check required fields and split the credential out of the parameters.

        Returns:
            (parameters without any password, password or None)
        """
        if not isinstance(params, dict):
            raise errors.ValidationError("Connection parameters must be an object")
        params = {k: v for k, v in params.items() if v is not None and v != ""}
        password = params.pop("password", None)

        if engine == EngineKind.SQLITE:
            if not (params.get("path") or params.get("database")):
                raise errors.ValidationError("SQLite connections require a database file path")
            return params, None

        if params.get("url"):
            try:
                url = make_url(str(params["url"]))
            except ArgumentError:
                raise errors.ValidationError("Connection URL could not be parsed")
            scheme = url.drivername.split("+")[0].lower()
            if scheme not in URL_SCHEMES[engine]:
                raise errors.ValidationError(
                    f"Connection URL scheme '{scheme}' does not match database type '{engine.value}'"
                )
            if url.password:
                password = password or url.password
                params["url"] = url._replace(password=None).render_as_string(hide_password=False)
            return params, password

        missing = [f for f in REQUIRED_FIELDS if not params.get(f)]
        if missing:
            raise errors.ValidationError(
                f"{engine.value} connections require: {', '.join(missing)}",
                details={"missing": missing},
            )
        if "port" in params:
            try:
                port = int(params["port"])
            except (TypeError, ValueError):
                raise errors.ValidationError("Port must be an integer")
            if not 1 <= port <= 65535:
                raise errors.ValidationError("Port must be between 1 and 65535")
            params["port"] = port
        return params, password

    def _build(self, engine: EngineKind, params: Dict[str, Any], secret: Optional[str]) -> EngineAdapter:
        return create_adapter(
            engine,
            params,
            secret=secret,
            pool_size=self.config.pool_size,
            pool_timeout=self.config.pool_timeout,
            pool_recycle=self.config.pool_recycle,
        )

    def _probe(self, engine: EngineKind, params: Dict[str, Any], secret: Optional[str]) -> List[Dict[str, Any]]:
        adapter = self._build(engine, params, secret)
        try:
            adapter.open()
            adapter.ping()
            raw = adapter.query("SELECT 1 AS connection_test", timeout=self.config.query_timeout, max_rows=1)
        finally:
            adapter.close()
        return [dict(zip(raw.columns, row)) for row in raw.rows]

    # -- public operations -------------------------------------------------

    def test(self, engine: Any, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Open, ping and probe a connection without registering it."""
        kind = EngineKind.parse(engine)
        clean, password = self._validate(kind, params)
        rows = self._probe(kind, clean, password)
        self.logger.info(f"Connection test succeeded for {kind.value}")
        return rows

    def register(self, name: str, engine: Any, params: Dict[str, Any]) -> ConnectionDescriptor:
        if not name or not str(name).strip():
            raise errors.ValidationError("Connection name is required")
        kind = EngineKind.parse(engine)
        clean, password = self._validate(kind, params)
        self._probe(kind, clean, password)

        credential_ref = self.secrets.put(password) if password else None
        descriptor = ConnectionDescriptor(
            id=str(uuid.uuid4()),
            name=str(name).strip(),
            engine=kind,
            params=clean,
            credential_ref=credential_ref,
        )
        self.store.insert_connection(descriptor)
        self.logger.info(f"Registered {kind.value} connection '{descriptor.name}' ({descriptor.id})")
        return descriptor

    def update(
        self,
        connection_id: str,
        name: Optional[str] = None,
        engine: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ConnectionDescriptor:
        current = self.get(connection_id)
        kind = EngineKind.parse(engine) if engine is not None else current.engine
        if kind != current.engine and self.store.query_ids_for_connection(connection_id):
            raise errors.ReferentialError(
                "Cannot change the database type of a connection that saved queries use"
            )

        credential_ref = current.credential_ref
        new_params = current.params
        if params is not None:
            new_params, password = self._validate(kind, params)
            secret = password if password else self.secrets.resolve(credential_ref)
            self._probe(kind, new_params, secret)
            if password:
                self.secrets.discard(credential_ref)
                credential_ref = self.secrets.put(password)
        elif kind != current.engine:
            raise errors.ValidationError("Changing the database type requires new connection parameters")

        if name is not None and not str(name).strip():
            raise errors.ValidationError("Connection name cannot be empty")

        descriptor = ConnectionDescriptor(
            id=current.id,
            name=str(name).strip() if name is not None else current.name,
            engine=kind,
            params=new_params,
            credential_ref=credential_ref,
            created_at=current.created_at,
            updated_at=utcnow(),
        )
        self.store.update_connection(descriptor)
        self._dispose(connection_id)
        self._notify(connection_id)
        self.logger.info(f"Updated connection {connection_id}")
        return descriptor

    def list(self) -> List[ConnectionDescriptor]:
        return self.store.list_connections()

    def get(self, connection_id: str) -> ConnectionDescriptor:
        descriptor = self.store.get_connection(connection_id)
        if descriptor is None:
            raise errors.NotFoundError(f"Connection with ID {connection_id} not found")
        return descriptor

    def remove(self, connection_id: str, force: bool = False) -> int:
        """Delete a connection.

        Returns:
            Number of saved queries marked dangling
        """
        descriptor = self.get(connection_id)
        references = self.store.query_ids_for_connection(connection_id)
        if references and not force:
            raise errors.ReferentialError(
                f"Connection is used by {len(references)} saved queries; delete them or pass force",
                details={"savedQueryIds": references},
            )
        marked = self.store.mark_dangling(connection_id) if references else 0
        self.store.delete_connection(connection_id)
        self._dispose(connection_id)
        self.secrets.discard(descriptor.credential_ref)
        self._notify(connection_id)
        self.logger.info(f"Removed connection {connection_id} ({marked} saved queries now dangling)")
        return marked

    def resolve(self, connection_id: str) -> EngineAdapter:
        with self._lock:
            adapter = self._adapters.get(connection_id)
            if adapter is not None:
                return adapter
            descriptor = self.get(connection_id)
            adapter = self._build(
                descriptor.engine,
                descriptor.params,
                self.secrets.resolve(descriptor.credential_ref),
            )
            adapter.open()
            self._adapters[connection_id] = adapter
            return adapter

    def resolve_connection_string(self, connection_string: str) -> Tuple[EngineAdapter, str]:
        """Ad hoc adapter for a raw connection string.

        At most ``adhoc_connection_limit`` ad hoc pools stay open; the least
        recently used one is closed when a new string pushes past the limit.

        Returns:
            (adapter, cache key) where the key never contains the string itself
        """
        if not connection_string or not connection_string.strip():
            raise errors.ValidationError("Connection string is required")
        value = connection_string.strip()
        key = "adhoc-" + hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]
        with self._lock:
            adapter = self._adhoc.get(key)
            if adapter is not None:
                self._adhoc.move_to_end(key)
                return adapter, key
            lowered = value.lower()
            if lowered.startswith(("postgres://", "postgresql://", "postgresql+")):
                kind, params = EngineKind.POSTGRES, {"url": value}
            elif lowered.startswith(("mysql://", "mysql+")):
                kind, params = EngineKind.MYSQL, {"url": value}
            else:
                path = value[len("sqlite:///"):] if lowered.startswith("sqlite:///") else value
                kind, params = EngineKind.SQLITE, {"path": path}
            adapter = self._build(kind, params, None)
            adapter.open()
            self._adhoc[key] = adapter
            self.logger.info(f"Opened ad hoc {kind.value} connection {key}")
            evicted = []
            while len(self._adhoc) > max(1, self.config.adhoc_connection_limit):
                evicted.append(self._adhoc.popitem(last=False))

        for old_key, old_adapter in evicted:
            old_adapter.close()
            self._notify(old_key)
            self.logger.info(f"Closed least recently used ad hoc connection {old_key}")
        return adapter, key

    def _dispose(self, connection_id: str) -> None:
        with self._lock:
            adapter = self._adapters.pop(connection_id, None)
        if adapter is not None:
            adapter.close()

    def close(self) -> None:
        with self._lock:
            adapters = list(self._adapters.values()) + list(self._adhoc.values())
            self._adapters.clear()
            self._adhoc.clear()
        for adapter in adapters:
            adapter.close()
        self.logger.info(f"Closed {len(adapters)} connection pools")
