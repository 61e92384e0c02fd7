from __future__ import annotations


def ensure_schema(conn) -> None:
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS raffles (
            id uuid PRIMARY KEY,
            title text NOT NULL,
            ticket_price numeric(10,2) NOT NULL CHECK (ticket_price > 0),
            currency text NOT NULL DEFAULT 'USD',
            total_tickets int NOT NULL CHECK (total_tickets > 0),
            status text NOT NULL DEFAULT 'active'
                CHECK (status IN ('active', 'paused', 'closed', 'finalized')),
            number_start int NOT NULL DEFAULT 1,
            number_padding int NOT NULL DEFAULT 4 CHECK (number_padding >= 0),
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS payments (
            id uuid PRIMARY KEY,
            raffle_id uuid NOT NULL REFERENCES raffles(id) ON DELETE CASCADE,
            status text NOT NULL DEFAULT 'pendiente'
                CHECK (status IN ('pendiente', 'verificado', 'rechazado')),
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    # The (raffle_id, numero_ticket) constraint is what keeps concurrent
    # allocators from selling the same number twice.
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS tickets (
            id uuid PRIMARY KEY,
            raffle_id uuid NOT NULL REFERENCES raffles(id) ON DELETE CASCADE,
            numero_ticket text NOT NULL,
            holder_name text NOT NULL,
            holder_national_id text NOT NULL,
            holder_phone text NOT NULL,
            holder_email text,
            status text NOT NULL DEFAULT 'reservado'
                CHECK (status IN ('reservado', 'pagado', 'verificado', 'cancelado')),
            created_at timestamptz NOT NULL DEFAULT now(),
            verified_at timestamptz,
            locked_by_payment boolean NOT NULL DEFAULT false,
            payment_id uuid REFERENCES payments(id) ON DELETE SET NULL,
            is_placeholder boolean NOT NULL DEFAULT false,
            CONSTRAINT tickets_raffle_number_key UNIQUE (raffle_id, numero_ticket)
        );
        """
    )
    # Older raffles rows may predate the padding column. Pin their width to the
    # labels already stored so a number keeps a single spelling.
    cur.execute("ALTER TABLE raffles ADD COLUMN IF NOT EXISTS number_padding int;")
    cur.execute(
        """
        UPDATE raffles r
        SET number_padding = COALESCE(
            (
                SELECT min(length(t.numero_ticket))
                FROM tickets t
                WHERE t.raffle_id = r.id AND t.numero_ticket ~ '^[0-9]+$'
            ),
            length((r.number_start + r.total_tickets - 1)::text)
        )
        WHERE r.number_padding IS NULL;
        """
    )
    cur.execute("ALTER TABLE raffles ALTER COLUMN number_padding SET DEFAULT 4;")
    cur.execute("ALTER TABLE raffles ALTER COLUMN number_padding SET NOT NULL;")
    cur.execute(
        "CREATE INDEX IF NOT EXISTS tickets_status_created_idx ON tickets (status, created_at);"
    )
    cur.execute("CREATE INDEX IF NOT EXISTS tickets_payment_id_idx ON tickets (payment_id);")
    conn.commit()
    cur.close()
