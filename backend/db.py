"""
PostgreSQL connections for the conversion repository.

`ConversionRepo` opens one connection per operation and commits it before
returning, so an upsert and the item insert that follows are separate
transactions. Item rows are keyed on line number, which makes a retried
insert after a partial failure harmless.
"""

import psycopg
from settings import settings


def get_conn():
    """Open a connection to `settings.db_url`.

    Gives up after five seconds so an unreachable database turns into a
    downstream failure response instead of a hung delivery.
    """

    return psycopg.connect(settings.db_url, connect_timeout=5)
