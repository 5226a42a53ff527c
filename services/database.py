import json
import sqlite3
from flask import current_app
from flask.cli import with_appcontext
import click
import logging


# Configure logging
logger = logging.getLogger(__name__)

PRICEBOOK_COLLECTIONS = ("categories", "services", "materials", "equipment", "price_rules")


class DatabaseError(Exception):
    """Custom exception raised for database-related errors."""
    pass


class DatabaseManager:
    def __init__(self, connection):
        """
        Initialize the DatabaseManager with a database connection.

        :param connection: A database connection object.
        """
        self.connection = connection

    def close(self):
        """
        Close the database connection.

        :raises DatabaseError: If closing the connection fails.
        """
        if self.connection:
            try:
                self.connection.close()
            except Exception as e:
                raise DatabaseError(f"Failed to close the database connection: {e}")

    def execute_query(self, query, params=None, auto_commit=False):
        """
        Execute a single SQL query with optional parameters.

        :param query: The SQL query to execute.
        :type query: str
        :param params: A list or tuple of query parameters, defaults to None.
        :type params: list | tuple, optional
        :param auto_commit: Commit straight after the statement.
        :return: The cursor after executing the query.
        :rtype: sqlite3.Cursor
        :raises DatabaseError: If an error occurs during query execution.
        """
        if params is None:
            params = []
        try:
            cursor = self.connection.cursor()
            cursor.execute(query, params)

            if auto_commit:
                self.commit()

            return cursor
        except Exception as e:
            raise DatabaseError(f"Database query failed: {e}")

    def commit(self):
        """
        Commit the current database transaction.

        :raises DatabaseError: If an error occurs during the commit operation.
        """
        try:
            self.connection.commit()
        except Exception as e:
            raise DatabaseError(f"Commit failed: {e}")

    def rollback(self):
        """
        Rollback the current transaction in case of errors.

        :raises DatabaseError: If the rollback operation fails.
        """
        try:
            self.connection.rollback()
            logger.info("Transaction rolled back successfully.")
        except Exception as e:
            raise DatabaseError(f"Rollback failed: {e}")

    def executemany(self, query, param_list):
        """
        Execute a SQL query multiple times with different parameter sets.

        :param query: The SQL query to execute.
        :type query: str
        :param param_list: A list of parameter tuples to execute the query with.
        :type param_list: list[tuple]
        :return: The number of rows affected.
        :rtype: int
        :raises DatabaseError: If the bulk execution fails.
        """
        try:
            cursor = self.connection.cursor()
            cursor.executemany(query, param_list)
            self.commit()
            return cursor.rowcount
        except Exception as e:
            raise DatabaseError(f"Bulk execution failed: {e}")


class DocumentStore:
    """
    Key/value document persistence on top of DatabaseManager.

    Every document lives under (collection, doc_id) and is stored as a JSON field map.
    Queries are scalar equality on one field; a list-valued field matches when it
    contains the value.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def put(self, collection: str, doc_id: str, fields: dict):
        """Create or replace the document."""
        payload = dict(fields)
        payload["id"] = doc_id
        self.db.execute_query(
            '''
            INSERT INTO documents (collection, doc_id, data)
            VALUES (?, ?, ?)
            ON CONFLICT(collection, doc_id)
            DO UPDATE SET data = excluded.data, updated_at = CURRENT_TIMESTAMP;
            ''',
            (collection, str(doc_id), json.dumps(payload, default=str)),
            auto_commit=True,
        )

    def put_many(self, collection: str, documents: list[dict]):
        """Upsert a batch of documents; each one must carry its own 'id'."""
        rows = [
            (collection, str(doc["id"]), json.dumps(doc, default=str))
            for doc in documents
        ]
        if not rows:
            return 0
        return self.db.executemany(
            '''
            INSERT INTO documents (collection, doc_id, data)
            VALUES (?, ?, ?)
            ON CONFLICT(collection, doc_id)
            DO UPDATE SET data = excluded.data, updated_at = CURRENT_TIMESTAMP;
            ''',
            rows,
        )

    def update(self, collection: str, doc_id: str, changes: dict):
        """Merge changes into an existing document. Returns False when it does not exist."""
        current = self.get(collection, doc_id)
        if current is None:
            return False
        current.update(changes)
        self.put(collection, doc_id, current)
        return True

    def get(self, collection: str, doc_id: str):
        row = self.db.execute_query(
            "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, str(doc_id)),
        ).fetchone()
        return json.loads(row["data"]) if row else None

    def all(self, collection: str) -> list[dict]:
        rows = self.db.execute_query(
            "SELECT data FROM documents WHERE collection = ? ORDER BY rowid",
            (collection,),
        ).fetchall()
        return [json.loads(row["data"]) for row in rows]

    def query(self, collection: str, field: str, value) -> list[dict]:
        matches = []
        for doc in self.all(collection):
            current = doc.get(field)
            if isinstance(current, list):
                if value in current:
                    matches.append(doc)
            elif current == value:
                matches.append(doc)
        return matches

    def delete(self, collection: str, doc_id: str):
        self.db.execute_query(
            "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, str(doc_id)),
            auto_commit=True,
        )

    def clear(self, collection: str):
        logger.info(f"Clearing documents in collection: {collection}")
        self.db.execute_query("DELETE FROM documents WHERE collection = ?", (collection,), auto_commit=True)


def create_db_manager(db_file: str):
    """
    Creates a DatabaseManager instance with a static SQLite connection.
    """
    connection = sqlite3.connect(
        db_file,
        timeout=30.0,
        detect_types=sqlite3.PARSE_DECLTYPES,
        check_same_thread=False
    )
    connection.execute("PRAGMA journal_mode=WAL;")
    connection.execute("PRAGMA synchronous=NORMAL;")
    connection.execute("PRAGMA foreign_keys=ON;")
    connection.row_factory = sqlite3.Row
    return DatabaseManager(connection)


@click.command('init-db')
@with_appcontext
def init_db_command():
    """
    Initialize the database using the CLI command.
    """
    db_manager = current_app.extensions['db_manager']
    init_db(db_manager)
    click.echo("Initialized the pricebook database.")


def init_db(db_manager: DatabaseManager):
    """
    Create the pricebook tables if they do not exist yet.
    """
    try:
        logger.info("Initializing the database...")
        tables = {
            "documents": '''
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,          -- JSON field map
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, doc_id)
                );
            ''',

            "upload_history": '''
                CREATE TABLE IF NOT EXISTS upload_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    table_name TEXT UNIQUE NOT NULL,
                    last_upload TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                );
            ''',
        }

        for name, schema in tables.items():
            logger.info(f"Creating table: {name} (if required)")
            db_manager.execute_query(schema)

        db_manager.commit()
        logger.info("Database initialized successfully!")
    except DatabaseError as e:
        logger.error(f"An error occurred: {e}")
