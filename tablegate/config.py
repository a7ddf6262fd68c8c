from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from sqlalchemy.engine import URL, make_url


class DialectName(str, Enum):
    MYSQL = "mysql"
    SQLITE = "sqlite"


DEFAULT_DRIVERS: dict[DialectName, Optional[str]] = {
    DialectName.MYSQL: "pymysql",
    DialectName.SQLITE: None,
}

ENV_PREFIX = "TABLEGATE_DB_"


@dataclass(frozen=True)
class DbConfig:
    """
    Connection target and behaviour switches for a RelationalTableGateway.

    Built once and handed to the gateway, which keeps it for its whole
    lifetime. For SQLite, ``database`` is the file path (or ``:memory:``) and
    the network fields are ignored.
    """

    database: str
    host: str = "localhost"
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    dialect: DialectName = DialectName.MYSQL
    driver: Optional[str] = None
    charset: str = "utf8"
    # INSERT IGNORE (MySQL) / INSERT OR IGNORE (SQLite) for create()
    insert_ignore: bool = False
    # strip tags and escape HTML in string values written by create()/update()
    sanitize_html: bool = False
    # raise ExecutionFault from CRUD methods instead of returning a sentinel
    raise_on_error: bool = False

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        object.__setattr__(self, "dialect", DialectName(self.dialect))

        if not self.database:
            raise ValueError("database must be set")
        if self.port is not None and not 0 < self.port < 65536:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")
        if self.dialect is DialectName.MYSQL and not self.host:
            raise ValueError("host must be set for MySQL connections")

    @property
    def drivername(self) -> str:
        driver = self.driver if self.driver is not None else DEFAULT_DRIVERS[self.dialect]
        if not driver:
            return self.dialect.value
        return f"{self.dialect.value}+{driver}"

    def url(self) -> URL:
        """Build the SQLAlchemy URL for this target."""
        if self.dialect is DialectName.SQLITE:
            return URL.create(self.drivername, database=self.database)

        return URL.create(
            self.drivername,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
            query={"charset": self.charset},
        )

    @classmethod
    def from_url(cls, url: str | URL, **options: Any) -> "DbConfig":
        """
        Build a config from a SQLAlchemy URL such as
        ``mysql+pymysql://user:pw@127.0.0.1:3306/app``.

        Keyword options (``insert_ignore``, ``sanitize_html``, ...) are passed
        through to the constructor.
        """
        parsed = make_url(url)
        backend, _, driver = parsed.drivername.partition("+")
        dialect = DialectName(backend)

        if dialect is DialectName.SQLITE:
            return cls(
                database=parsed.database or ":memory:",
                dialect=dialect,
                driver=driver or None,
                **options,
            )

        charset = parsed.query.get("charset", "utf8")
        if isinstance(charset, tuple):
            charset = charset[-1]

        return cls(
            database=parsed.database or "",
            host=parsed.host or "localhost",
            port=parsed.port,
            user=parsed.username,
            password=parsed.password,
            dialect=dialect,
            driver=driver or None,
            charset=charset,
            **options,
        )

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        prefix: str = ENV_PREFIX,
        **options: Any,
    ) -> "DbConfig":
        """
        Build a config from ``TABLEGATE_DB_*`` environment variables.

        Recognised names (after the prefix): HOST, PORT, NAME, USER, PASSWORD,
        DIALECT, DRIVER, CHARSET. NAME is required.
        """
        env = os.environ if environ is None else environ

        database = env.get(f"{prefix}NAME")
        if not database:
            raise ValueError(f"{prefix}NAME must be set")

        port = env.get(f"{prefix}PORT")

        return cls(
            database=database,
            host=env.get(f"{prefix}HOST", "localhost"),
            port=int(port) if port else None,
            user=env.get(f"{prefix}USER"),
            password=env.get(f"{prefix}PASSWORD"),
            dialect=DialectName(env.get(f"{prefix}DIALECT", DialectName.MYSQL.value).lower()),
            driver=env.get(f"{prefix}DRIVER"),
            charset=env.get(f"{prefix}CHARSET", "utf8"),
            **options,
        )
