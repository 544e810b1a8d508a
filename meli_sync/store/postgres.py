"""Postgres store (psycopg 3).

Tables:
- ``orders``: one row per sale, unique ``sale_number``.
- ``marketplace_credentials``: append-only, latest ``issued_at`` is current.
- ``productos``: owned by the catalogue importer; only read and updated here.

Every guard the reconciler relies on lives in the SQL itself (ON CONFLICT,
``process_correlation_id IS NULL``, non-terminal state) so that two workers
racing past the in-process locks still cannot double-write.
"""

from __future__ import annotations

import logging
from typing import Any

import psycopg
from psycopg.rows import dict_row

from meli_sync.models import Credential, OrderRecord, OrderState, ProductRecord

logger = logging.getLogger(__name__)

_ORDER_COLUMNS = [
    "sale_number",
    "order_state",
    "process_correlation_id",
    "sale_type",
    "item_id",
    "pack_id",
    "seller_id",
    "buyer_id",
    "product_name",
    "sku",
    "quantity",
    "sale_price",
    "marketplace_net",
    "marketplace_fee",
    "marketplace_coupon",
    "shipping_cost",
    "taxes",
    "sold_at",
    "delivery_estimate",
    "marketplace_link",
    "external_link",
    "buyer_tax_id",
    "recipient_name",
    "address",
    "city",
    "province",
    "postal_code",
    "created_at",
    "updated_at",
]

_TERMINAL_STATES = (OrderState.CANCELLED.value, OrderState.OTHER.value)

# ProductRecord field -> productos column
_PRODUCT_COLUMNS = {
    "publication_id": "id_publicacion",
    "price": "precio",
    "stock": "stock",
    "status": "estado",
    "title": "titulo",
    "sku": "sku",
    "last_updated": "ultima_actualizacion",
}


class PostgresStore:
    """psycopg-backed implementation of OrderStore."""

    def __init__(self, database_url: str):
        self._database_url = database_url

    def _get_conn(self) -> psycopg.Connection:
        return psycopg.connect(self._database_url, autocommit=True, row_factory=dict_row)

    def init_tables(self) -> None:
        """Create the tables this service owns.  Idempotent."""
        with self._get_conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS orders (
                    id                     SERIAL PRIMARY KEY,
                    sale_number            TEXT NOT NULL UNIQUE,
                    order_state            TEXT NOT NULL DEFAULT 'unknown',
                    process_correlation_id TEXT,
                    sale_type              TEXT NOT NULL DEFAULT 'ML',
                    item_id                TEXT,
                    pack_id                TEXT,
                    seller_id              TEXT,
                    buyer_id               TEXT,
                    product_name           TEXT,
                    sku                    TEXT,
                    quantity               INT NOT NULL DEFAULT 1,
                    sale_price             NUMERIC(12, 2),
                    marketplace_net        NUMERIC(12, 2),
                    marketplace_fee        NUMERIC(12, 2),
                    marketplace_coupon     NUMERIC(12, 2),
                    shipping_cost          NUMERIC(12, 2),
                    taxes                  NUMERIC(12, 2),
                    sold_at                TIMESTAMPTZ,
                    delivery_estimate      TIMESTAMPTZ,
                    marketplace_link       TEXT,
                    external_link          TEXT,
                    buyer_tax_id           TEXT,
                    recipient_name         TEXT,
                    address                TEXT,
                    city                   TEXT,
                    province               TEXT,
                    postal_code            TEXT,
                    created_at             TIMESTAMPTZ DEFAULT now(),
                    updated_at             TIMESTAMPTZ DEFAULT now()
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS marketplace_credentials (
                    id            SERIAL PRIMARY KEY,
                    access_token  TEXT NOT NULL,
                    refresh_token TEXT NOT NULL,
                    expires_at    TIMESTAMPTZ NOT NULL,
                    issued_at     TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)
        logger.info("Order and credential tables initialized")

    # ── Orders ──────────────────────────────────────────────────────────

    def get_order(self, sale_number: str) -> OrderRecord | None:
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {', '.join(_ORDER_COLUMNS)} FROM orders WHERE sale_number = %s",
                (sale_number,),
            ).fetchone()
        return OrderRecord.from_dict(row) if row else None

    def create_order(self, record: OrderRecord) -> bool:
        data = record.to_dict()
        placeholders = ", ".join(["%s"] * len(_ORDER_COLUMNS))
        with self._get_conn() as conn:
            cur = conn.execute(
                f"""INSERT INTO orders ({', '.join(_ORDER_COLUMNS)})
                    VALUES ({placeholders})
                    ON CONFLICT (sale_number) DO NOTHING""",
                tuple(data[c] for c in _ORDER_COLUMNS),
            )
            return cur.rowcount == 1

    def update_order_state(self, sale_number: str, state: OrderState) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute(
                """UPDATE orders SET order_state = %s, updated_at = now()
                   WHERE sale_number = %s AND order_state NOT IN (%s, %s)""",
                (state.value, sale_number, *_TERMINAL_STATES),
            )
            return cur.rowcount == 1

    def set_correlation_id(self, sale_number: str, correlation_id: str) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute(
                """UPDATE orders SET process_correlation_id = %s, updated_at = now()
                   WHERE sale_number = %s AND process_correlation_id IS NULL
                     AND order_state NOT IN (%s, %s)""",
                (correlation_id, sale_number, *_TERMINAL_STATES),
            )
            return cur.rowcount == 1

    # ── Credentials ─────────────────────────────────────────────────────

    def latest_credential(self) -> Credential | None:
        with self._get_conn() as conn:
            row = conn.execute(
                """SELECT access_token, refresh_token, expires_at, issued_at
                   FROM marketplace_credentials
                   ORDER BY issued_at DESC, id DESC LIMIT 1"""
            ).fetchone()
        return Credential(**row) if row else None

    def add_credential(self, credential: Credential) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO marketplace_credentials
                   (access_token, refresh_token, expires_at, issued_at)
                   VALUES (%s, %s, %s, %s)""",
                (
                    credential.access_token,
                    credential.refresh_token,
                    credential.expires_at,
                    credential.issued_at,
                ),
            )

    # ── Products ────────────────────────────────────────────────────────

    def get_product(self, publication_id: str) -> ProductRecord | None:
        select = ", ".join(f"{col} AS {name}" for name, col in _PRODUCT_COLUMNS.items())
        with self._get_conn() as conn:
            row = conn.execute(
                f"SELECT {select} FROM productos WHERE id_publicacion = %s",
                (publication_id,),
            ).fetchone()
        return ProductRecord(**row) if row else None

    def update_product(self, publication_id: str, changes: dict[str, Any]) -> None:
        unknown = set(changes) - set(_PRODUCT_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown product fields: {sorted(unknown)}")
        if not changes:
            return
        assignments = ", ".join(f"{_PRODUCT_COLUMNS[k]} = %s" for k in changes)
        with self._get_conn() as conn:
            conn.execute(
                f"UPDATE productos SET {assignments} WHERE id_publicacion = %s",
                (*changes.values(), publication_id),
            )
