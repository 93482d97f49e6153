"""Connection settings: targets, credentials, database and pool bounds."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote_plus, unquote, urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import ConfigurationError

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 28015
DEFAULT_DATABASE = "test"


def _split_auth(parsed: Any) -> tuple[str | None, str | None]:
    username = unquote(parsed.username) if parsed.username else None
    password = unquote(parsed.password) if parsed.password else None
    return username, password


def _database_from(parsed: Any) -> str | None:
    name = (parsed.path or "").lstrip("/")
    return name or None


class ConnectionSettings(BaseModel):
    """Settings handed to the adapter by the outer ORM.

    ``url`` is parsed into the discrete fields. With ``rs`` set, ``url`` is a
    comma-separated list of URIs parsed into parallel ``hosts``/``ports``
    lists; explicit ``database``/``username``/``password`` win over values
    found in the URIs.
    """

    model_config = ConfigDict(frozen=True)

    url: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    hosts: list[str] = Field(default_factory=list)
    ports: list[int] = Field(default_factory=list)
    database: str = DEFAULT_DATABASE
    username: str | None = None
    password: str | None = None
    rs: bool = False
    replica_set: str | None = None

    pool_max: int = Field(default=10, ge=1)
    pool_min: int = Field(default=1, ge=0)
    idle_timeout: float = Field(default=30.0, gt=0)
    acquire_timeout: float | None = Field(default=None, gt=0)
    operation_timeout: float | None = Field(default=None, gt=0)
    server_selection_timeout_ms: int = 5000
    connect_timeout_ms: int = 10000

    @model_validator(mode="before")
    @classmethod
    def _parse_url(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not data.get("url"):
            return data
        data = dict(data)
        if data.get("rs") or data.get("replica_set"):
            data["rs"] = True
            return cls._parse_multi_host(data)
        parsed = urlparse(data["url"])
        username, password = _split_auth(parsed)
        data["host"] = parsed.hostname or data.get("host") or DEFAULT_HOST
        data["port"] = parsed.port or data.get("port") or DEFAULT_PORT
        data["database"] = (
            _database_from(parsed) or data.get("database") or DEFAULT_DATABASE
        )
        data["username"] = username or data.get("username")
        data["password"] = password or data.get("password")
        return data

    @staticmethod
    def _parse_multi_host(data: dict[str, Any]) -> dict[str, Any]:
        hosts: list[str] = []
        ports: list[int] = []
        for uri in str(data["url"]).split(","):
            uri = uri.strip()
            if not uri:
                continue
            if "://" not in uri:
                uri = f"mongodb://{uri}"
            parsed = urlparse(uri)
            hosts.append(parsed.hostname or DEFAULT_HOST)
            ports.append(parsed.port or DEFAULT_PORT)
            username, password = _split_auth(parsed)
            if not data.get("database"):
                data["database"] = _database_from(parsed)
            if not data.get("username"):
                data["username"] = username
            if not data.get("password"):
                data["password"] = password
        data["hosts"] = hosts
        data["ports"] = ports
        data["database"] = data.get("database") or DEFAULT_DATABASE
        return data

    @model_validator(mode="after")
    def _check_bounds(self) -> ConnectionSettings:
        if self.pool_min > self.pool_max:
            raise ValueError(
                f"pool_min ({self.pool_min}) must not exceed pool_max ({self.pool_max})"
            )
        if len(self.hosts) != len(self.ports):
            raise ValueError("hosts and ports must have the same length")
        return self

    @classmethod
    def load(
        cls, settings: ConnectionSettings | dict[str, Any] | None = None
    ) -> ConnectionSettings:
        """Validate settings, raising ConfigurationError on bad input."""
        if isinstance(settings, ConnectionSettings):
            return settings
        try:
            return cls.model_validate(settings or {})
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

    def seeds(self) -> list[str]:
        """``host:port`` seed list for the driver."""
        if self.rs and self.hosts:
            return [f"{h}:{p}" for h, p in zip(self.hosts, self.ports)]
        return [f"{self.host}:{self.port}"]

    def mongo_uri(self) -> str:
        """Build a MongoDB connection string (credentials URL-escaped)."""
        auth = ""
        if self.username:
            auth = quote_plus(self.username)
            if self.password:
                auth += ":" + quote_plus(self.password)
            auth += "@"
        uri = f"mongodb://{auth}{','.join(self.seeds())}/{self.database}"
        if self.replica_set:
            uri += f"?replicaSet={quote_plus(self.replica_set)}"
        return uri

    def client_kwargs(self) -> dict[str, Any]:
        """Driver options: socket pool sized from the same bounds."""
        return {
            "maxPoolSize": self.pool_max,
            "minPoolSize": self.pool_min,
            "maxIdleTimeMS": int(self.idle_timeout * 1000),
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
            "connectTimeoutMS": self.connect_timeout_ms,
        }
