"""
psqlchunks - run chunked SQL files against PostgreSQL.

Each chunk runs inside its own savepoint of a single outer transaction, so a
failing chunk is rolled back on its own and reported with the line of the
source file the server complained about.
"""

__version__ = "0.3.0"
