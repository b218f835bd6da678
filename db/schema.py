import re
from pydantic import BaseModel, ConfigDict, field_validator

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]{0,63}$')


def _validate_identifier(v: str) -> str:
    if not _IDENTIFIER.match(v):
        raise ValueError(f'Invalid SQL identifier: {v!r}')
    return v


class ColumnSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    sql_type: str

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _validate_identifier(v)

    @field_validator('sql_type')
    @classmethod
    def validate_sql_type(cls, v: str) -> str:
        if not v.strip() or ';' in v:
            raise ValueError(f'Invalid column type declaration: {v!r}')
        return v.strip()


class TableSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    columns: tuple[ColumnSpec, ...]

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _validate_identifier(v)

    @field_validator('columns')
    @classmethod
    def validate_columns(cls, v: tuple[ColumnSpec, ...]) -> tuple[ColumnSpec, ...]:
        if not v:
            raise ValueError('A table needs at least one column')
        names = [column.name for column in v]
        if len(set(names)) != len(names):
            raise ValueError(f'Duplicate column names: {names}')
        return v

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    def column(self, name: str) -> ColumnSpec | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


class FieldRename(BaseModel):
    """Data in ``old_field`` moves to ``new_field`` when ``new_field`` is created."""

    model_config = ConfigDict(frozen=True)

    table: str
    old_field: str
    new_field: str

    @field_validator('table', 'old_field', 'new_field')
    @classmethod
    def validate_names(cls, v: str) -> str:
        return _validate_identifier(v)


def _table(name: str, *columns: tuple[str, str]) -> TableSpec:
    return TableSpec(
        name=name,
        columns=tuple(ColumnSpec(name=column, sql_type=sql_type) for column, sql_type in columns),
    )


# Added columns cannot carry PRIMARY KEY or UNIQUE, and NOT NULL needs a default.
DATABASE_TABLES: tuple[TableSpec, ...] = (
    _table(
        "domains",
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("domain", "TEXT NOT NULL DEFAULT ''"),
        ("active", "INTEGER NOT NULL DEFAULT 0"),
        ("comments", "TEXT"),
    ),
    _table(
        "lightning",
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("pubkey", "TEXT NOT NULL DEFAULT ''"),
        ("lightningaddress", "TEXT NOT NULL DEFAULT ''"),
        ("comments", "TEXT"),
    ),
    _table(
        "mediafiles",
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("pubkey", "TEXT NOT NULL DEFAULT ''"),
        ("filename", "TEXT NOT NULL DEFAULT ''"),
        ("original_hash", "TEXT"),
        ("hash", "TEXT"),
        ("status", "TEXT NOT NULL DEFAULT 'pending'"),
        ("percentage", "INTEGER NOT NULL DEFAULT 0"),
        ("visibility", "INTEGER NOT NULL DEFAULT 0"),
        ("active", "INTEGER NOT NULL DEFAULT 0"),
        ("date", "INTEGER NOT NULL DEFAULT 0"),
        ("ip_address", "TEXT"),
        ("magnet", "TEXT"),
        ("blurhash", "TEXT"),
        ("dimensions", "TEXT"),
        ("filesize", "INTEGER NOT NULL DEFAULT 0"),
        ("comments", "TEXT"),
    ),
    _table(
        "mediatags",
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("fileid", "INTEGER NOT NULL DEFAULT 0"),
        ("tag", "TEXT NOT NULL DEFAULT ''"),
    ),
    _table(
        "registered",
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("pubkey", "TEXT NOT NULL DEFAULT ''"),
        ("hex", "TEXT NOT NULL DEFAULT ''"),
        ("username", "TEXT NOT NULL DEFAULT ''"),
        ("password", "TEXT"),
        ("domain", "TEXT NOT NULL DEFAULT ''"),
        ("active", "INTEGER NOT NULL DEFAULT 0"),
        ("date", "INTEGER NOT NULL DEFAULT 0"),
        ("allowed", "INTEGER NOT NULL DEFAULT 0"),
        ("comments", "TEXT"),
    ),
)

FIELD_COMPATIBILITY: tuple[FieldRename, ...] = (
    FieldRename(table="lightning", old_field="lnaddress", new_field="lightningaddress"),
    FieldRename(table="mediafiles", old_field="title", new_field="filename"),
)
