import logging
import sys
from pathlib import Path

import aiosqlite
from pydantic import BaseModel, ConfigDict

from config import LOCAL_CONFIG_PATH
from core.settings import get_config_value, update_local_config_key
from db.connection import ConnectionPool, get_pool
from db.schema import DATABASE_TABLES, FIELD_COMPATIBILITY, ColumnSpec, FieldRename, TableSpec

logger = logging.getLogger(__name__)


class ColumnChange(BaseModel):
    """A column to add to an existing table, placed right after ``after``."""

    model_config = ConfigDict(frozen=True)

    table: str
    column: ColumnSpec
    after: str | None = None
    migrate_from: str | None = None


async def table_exists(db: aiosqlite.Connection, table_name: str) -> bool:
    cursor = await db.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,)
    )
    return (await cursor.fetchone()) is not None


async def get_table_info(db: aiosqlite.Connection, table_name: str) -> list:
    cursor = await db.execute(f"PRAGMA table_info({table_name})")
    return list(await cursor.fetchall())


async def get_table_columns(db: aiosqlite.Connection, table_name: str) -> list[str] | None:
    """Column names in table order, or None when the table does not exist."""
    if not await table_exists(db, table_name):
        return None
    return [row[1] for row in await get_table_info(db, table_name)]


def plan_table_creation(table: TableSpec, live_columns: list[str] | None) -> ColumnSpec | None:
    if live_columns is not None:
        return None
    return table.columns[0]


def plan_column_change(
    table: TableSpec,
    column_name: str,
    live_columns: list[str],
    renames: tuple[FieldRename, ...] = FIELD_COMPATIBILITY,
) -> ColumnChange | None:
    """Decide what ensuring ``column_name`` on ``table`` requires.

    Returns None when the column already exists. Otherwise the column goes
    right after the column declared before it (first position when it is the
    first declared column). A rename directive targeting the column is only
    used when its old column is still present.
    """
    if column_name in live_columns:
        return None

    index = table.column_names.index(column_name)
    after = table.columns[index - 1].name if index else None

    migrate_from = None
    for rename in renames:
        if rename.table == table.name and rename.new_field == column_name and rename.old_field in live_columns:
            migrate_from = rename.old_field
            break

    return ColumnChange(table=table.name, column=table.columns[index], after=after, migrate_from=migrate_from)


_TABLE_CONSTRAINTS = {"CONSTRAINT", "PRIMARY", "UNIQUE", "CHECK", "FOREIGN"}


def _split_table_definitions(create_sql: str) -> tuple[list[str], str] | None:
    """Split a stored CREATE TABLE statement into its top-level definitions.

    Returns the column and constraint definitions plus the table options that
    follow the closing parenthesis, or None when the statement is not one this
    parser can take apart safely.
    """
    if "--" in create_sql or "/*" in create_sql:
        return None
    start = create_sql.find("(")
    if start < 0:
        return None

    definitions = []
    depth = 0
    quote = None
    current = start + 1
    for i in range(start + 1, len(create_sql)):
        char = create_sql[i]
        if quote:
            if char == quote:
                quote = None
        elif char in "'\"`":
            quote = char
        elif char == "[":
            quote = "]"
        elif char == "(":
            depth += 1
        elif char == ")":
            if depth == 0:
                definitions.append(create_sql[current:i].strip())
                if not all(definitions):
                    return None
                return definitions, create_sql[i + 1:].strip()
            depth -= 1
        elif char == "," and depth == 0:
            definitions.append(create_sql[current:i].strip())
            current = i + 1
    return None


def _definition_name(definition: str) -> str:
    return definition.split(None, 1)[0].strip('"`[]').lower()


def _splice_column(create_sql: str, tmp_name: str, live_names: list[str], change: ColumnChange) -> str | None:
    """CREATE TABLE statement for ``tmp_name`` with the new column in place."""
    split = _split_table_definitions(create_sql)
    if split is None:
        return None
    definitions, options = split

    column_count = 0
    while column_count < len(definitions):
        if definitions[column_count].split(None, 1)[0].upper() in _TABLE_CONSTRAINTS:
            break
        column_count += 1
    names = [_definition_name(definition) for definition in definitions[:column_count]]
    if names != [name.lower() for name in live_names]:
        return None

    position = names.index(change.after.lower()) + 1 if change.after else 0
    definitions.insert(position, f"{change.column.name} {change.column.sql_type}")
    statement = f"CREATE TABLE {tmp_name} ({', '.join(definitions)})"
    return f"{statement} {options}" if options else statement


async def _rebuild_table(db: aiosqlite.Connection, table: TableSpec, live_names: list[str], change: ColumnChange) -> bool:
    """Recreate ``table`` with the new column at its declared position.

    SQLite can only append columns, so the stored CREATE TABLE text gets the
    new column spliced in, the rows are copied over and the table's indexes
    and triggers are recreated. Returns False, with nothing changed, when the
    stored definition cannot be rewritten.
    """
    cursor = await db.execute(
        "SELECT type, sql FROM sqlite_master WHERE tbl_name=? AND sql IS NOT NULL",
        (table.name,)
    )
    entries = list(await cursor.fetchall())
    create_sql = next((sql for kind, sql in entries if kind == "table"), None)
    dependents = [sql for kind, sql in entries if kind in ("index", "trigger")]

    tmp_name = f"_{table.name}_rebuild"
    statement = _splice_column(create_sql, tmp_name, live_names, change) if create_sql else None
    if statement is None:
        return False
    columns = ", ".join(live_names)

    await db.execute("PRAGMA foreign_keys=OFF")
    try:
        await db.execute("BEGIN")
        await db.execute(f"DROP TABLE IF EXISTS {tmp_name}")
        await db.execute(statement)
        await db.execute(f"INSERT INTO {tmp_name} ({columns}) SELECT {columns} FROM {table.name}")
        await db.execute(f"DROP TABLE {table.name}")
        await db.execute(f"ALTER TABLE {tmp_name} RENAME TO {table.name}")
        for sql in dependents:
            await db.execute(sql)
        cursor = await db.execute(f"PRAGMA foreign_key_check({table.name})")
        if await cursor.fetchone() is not None:
            raise aiosqlite.IntegrityError(f"Foreign key violations in table {table.name}")
        await db.commit()
    except aiosqlite.Error:
        await db.rollback()
        raise
    finally:
        await db.execute("PRAGMA foreign_keys=ON")
    return True


async def add_column(pool: ConnectionPool, table: TableSpec, change: ColumnChange) -> bool:
    column = change.column
    add_statement = f"ALTER TABLE {table.name} ADD COLUMN {column.name} {column.sql_type}"
    async with pool.acquire(f"add_column | Table: {table.name} | Column: {column.name}") as db:
        try:
            live_names = await get_table_columns(db, table.name)
            if change.after is not None and change.after not in live_names:
                logger.warning(f"Column {change.after} not found in table {table.name}, appending {column.name}")
                append = True
            else:
                append = change.after is not None and live_names[-1] == change.after

            if append:
                await db.execute(add_statement)
                await db.commit()
            elif not await _rebuild_table(db, table, live_names, change):
                logger.warning(f"Cannot rewrite definition of table {table.name}, appending {column.name}")
                await db.execute(add_statement)
                await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"Error creating column: {column.name} in table: {table.name}: {e}")
            return False
    return True


async def migrate_old_field(pool: ConnectionPool, table_name: str, old_field: str, new_field: str) -> bool:
    async with pool.acquire(f"migrate_old_field | Table: {table_name}") as db:
        try:
            await db.execute(
                f"UPDATE {table_name} SET {new_field} = {old_field} WHERE {old_field} IS NOT NULL"
            )
            await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"Error migrating old field, table: {table_name} | {old_field} -> {new_field}: {e}")
            return False
    logger.warning(f"Migrated all data from old field, table: {table_name} | Old field: {old_field} -> New field: {new_field}")
    return True


async def delete_old_field(pool: ConnectionPool, table_name: str, old_field: str) -> bool:
    async with pool.acquire(f"delete_old_field | Table: {table_name}") as db:
        try:
            await db.execute(f"ALTER TABLE {table_name} DROP COLUMN {old_field}")
            await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"Error deleting old field, table: {table_name} | Old field: {old_field}: {e}")
            return False
    logger.warning(f"Deleted old field, table: {table_name} | Old field: {old_field}")
    return True


async def ensure_table(pool: ConnectionPool, table: TableSpec) -> bool:
    async with pool.acquire(f"ensure_table | Table: {table.name}") as db:
        try:
            first_column = plan_table_creation(table, await get_table_columns(db, table.name))
            if first_column is None:
                return True
            logger.warning(f"Table not found: {table.name}")
            logger.info(f"Creating table: {table.name}")
            await db.execute(
                f"CREATE TABLE IF NOT EXISTS {table.name} ({first_column.name} {first_column.sql_type})"
            )
            await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"Error creating table {table.name}: {e}")
            return False
    return True


async def ensure_column(
    pool: ConnectionPool,
    table: TableSpec,
    column_name: str,
    renames: tuple[FieldRename, ...] = FIELD_COMPATIBILITY,
) -> bool:
    async with pool.acquire(f"ensure_column | Table: {table.name} | Column: {column_name}") as db:
        try:
            live_columns = await get_table_columns(db, table.name)
        except aiosqlite.Error as e:
            logger.error(f"Error checking table consistency, table: {table.name}: {e}")
            return False

    if live_columns is None:
        logger.error(f"Table not found: {table.name}")
        return False

    change = plan_column_change(table, column_name, live_columns, renames)
    if change is None:
        return True

    logger.warning(f"Column not found in table: {table.name} column: {column_name}")
    logger.info(f"Creating column: {column_name} in table: {table.name}")
    if not await add_column(pool, table, change):
        return False

    # The old column is only dropped after its data was copied
    if change.migrate_from and await migrate_old_field(pool, table.name, change.migrate_from, column_name):
        await delete_old_field(pool, table.name, change.migrate_from)
    return True


async def drop_tables(pool: ConnectionPool, tables: tuple[TableSpec, ...]) -> bool:
    async with pool.acquire("drop_tables") as db:
        try:
            for table in tables:
                logger.info(f"Dropping table: {table.name}")
                await db.execute(f"DROP TABLE IF EXISTS {table.name}")
            await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"Error dropping tables: {e}")
            return False
    return True


async def reconcile_schema(
    pool: ConnectionPool,
    tables: tuple[TableSpec, ...] = DATABASE_TABLES,
    reset_tables: bool = False,
    renames: tuple[FieldRename, ...] = FIELD_COMPATIBILITY,
    local_path: Path = LOCAL_CONFIG_PATH,
) -> bool:
    if reset_tables:
        # The flag is consumed before anything is dropped
        if not update_local_config_key("database.resetTables", False, local_path):
            logger.critical("Error updating database.resetTables in config file, exiting program to avoid data corruption")
            sys.exit(1)
        if not await drop_tables(pool, tables):
            return False

    for table in tables:
        if not await ensure_table(pool, table):
            return False
        for column in table.columns:
            if not await ensure_column(pool, table, column.name, renames):
                return False
    return True


async def init_database(settings: dict, local_path: Path = LOCAL_CONFIG_PATH) -> ConnectionPool:
    pool = get_pool(settings)
    reset_tables = bool(get_config_value(settings, "database.resetTables", False))

    if not await reconcile_schema(pool, DATABASE_TABLES, reset_tables, FIELD_COMPATIBILITY, local_path):
        logger.critical("Error checking database integrity")
        sys.exit(1)

    logger.info(f"Database initialized at {pool.db_path}")
    return pool
