from __future__ import annotations

from datetime import datetime
import uuid
from typing import Callable, Optional, Sequence

from app.core.errors import InvalidTransition, PaymentNotFound, RaffleNotFound, TicketNotFound
from app.db.connection import fetch_all, fetch_one, rows_as_dicts, run_transaction
from app.models.tickets import (
    CONFIRMING_PAYMENT_STATUSES,
    Holder,
    InsertResult,
    Raffle,
    Ticket,
    TicketStatus,
)

TICKET_COLUMNS = (
    "id, raffle_id, numero_ticket, holder_name, holder_national_id, holder_phone, "
    "holder_email, status, created_at, verified_at, locked_by_payment, payment_id, "
    "is_placeholder"
)

# Receives the locked rows, returns the ids that should change.
TransitionPlanner = Callable[[list[Ticket]], list[uuid.UUID]]


class TicketStore:
    """Storage collaborator of the allocation core.

    Implementations must enforce a uniqueness constraint on
    ``(raffle_id, numero_ticket)``; the allocator relies on it instead of
    checking availability before inserting. Every method is a single atomic
    unit on the storage side.
    """

    def get_raffle(self, raffle_id: uuid.UUID) -> Raffle:
        raise NotImplementedError

    def list_ticket_numbers(self, raffle_id: uuid.UUID) -> list[str]:
        raise NotImplementedError

    def number_exists(self, raffle_id: uuid.UUID, numero_ticket: str) -> bool:
        raise NotImplementedError

    def insert_reserved(
        self,
        raffle: Raffle,
        numbers: Sequence[str],
        holder: Holder,
        created_at: datetime,
        is_placeholder: bool = False,
    ) -> InsertResult:
        """Insert one reservado row per number, skipping numbers already taken."""
        raise NotImplementedError

    def delete_unpaid(self, ticket_ids: Sequence[uuid.UUID]) -> list[Ticket]:
        raise NotImplementedError

    def transition(
        self,
        ticket_ids: Sequence[uuid.UUID],
        planner: TransitionPlanner,
        from_status: str,
        to_status: str,
        payment_id: Optional[uuid.UUID] = None,
        verified_at: Optional[datetime] = None,
    ) -> list[Ticket]:
        raise NotImplementedError

    def release_expired(self, cutoff: datetime) -> list[Ticket]:
        raise NotImplementedError

    def lock_for_payment(
        self, ticket_ids: Sequence[uuid.UUID], payment_id: uuid.UUID
    ) -> list[Ticket]:
        raise NotImplementedError

    def clear_payment_lock(self, payment_id: uuid.UUID) -> int:
        raise NotImplementedError

    def assign_holder(self, ticket_id: uuid.UUID, holder: Holder) -> Ticket:
        raise NotImplementedError


def _placeholders(values: Sequence) -> str:
    return ", ".join(["%s"] * len(values))


def ticket_from_row(row: dict) -> Ticket:
    return Ticket(
        id=row["id"],
        raffle_id=row["raffle_id"],
        numero_ticket=row["numero_ticket"],
        holder=Holder(
            name=row["holder_name"],
            national_id=row["holder_national_id"],
            phone=row["holder_phone"],
            email=row.get("holder_email"),
        ),
        status=row["status"],
        created_at=row["created_at"],
        verified_at=row.get("verified_at"),
        locked_by_payment=bool(row.get("locked_by_payment")),
        payment_id=row.get("payment_id"),
        is_placeholder=bool(row.get("is_placeholder")),
    )


def _select_for_update(cur, ticket_ids: Sequence[uuid.UUID]) -> list[Ticket]:
    if not ticket_ids:
        return []
    # Stable lock order so two ledgers touching overlapping tickets cannot deadlock.
    cur.execute(
        f"""
        SELECT {TICKET_COLUMNS}
        FROM tickets
        WHERE id IN ({_placeholders(ticket_ids)})
        ORDER BY id
        FOR UPDATE
        """,
        list(ticket_ids),
    )
    return [ticket_from_row(row) for row in rows_as_dicts(cur)]


def _lock_payment(cur, payment_id: uuid.UUID) -> None:
    # FOR SHARE keeps the payment row alive until the tickets point at it.
    cur.execute("SELECT id FROM payments WHERE id = %s FOR SHARE", (payment_id,))
    if not rows_as_dicts(cur):
        raise PaymentNotFound(payment_id)


def _require_all(tickets: list[Ticket], ticket_ids: Sequence[uuid.UUID]) -> None:
    found = {ticket.id for ticket in tickets}
    missing = [ticket_id for ticket_id in ticket_ids if ticket_id not in found]
    if missing:
        raise TicketNotFound(missing)


class PostgresTicketStore(TicketStore):
    def get_raffle(self, raffle_id: uuid.UUID) -> Raffle:
        row = fetch_one(
            """
            SELECT id, total_tickets, status, number_start, number_padding, ticket_price
            FROM raffles
            WHERE id = %s
            """,
            (raffle_id,),
        )
        if not row:
            raise RaffleNotFound(raffle_id)
        return Raffle(
            id=row["id"],
            total_tickets=row["total_tickets"],
            status=row["status"],
            number_start=1 if row.get("number_start") is None else row["number_start"],
            number_padding=row["number_padding"],
            ticket_price=row["ticket_price"],
        )

    def list_ticket_numbers(self, raffle_id: uuid.UUID) -> list[str]:
        rows = fetch_all(
            "SELECT numero_ticket FROM tickets WHERE raffle_id = %s ORDER BY numero_ticket ASC",
            (raffle_id,),
        )
        return [row["numero_ticket"] for row in rows]

    def number_exists(self, raffle_id: uuid.UUID, numero_ticket: str) -> bool:
        row = fetch_one(
            "SELECT 1 AS found FROM tickets WHERE raffle_id = %s AND numero_ticket = %s",
            (raffle_id, numero_ticket),
        )
        return row is not None

    def insert_reserved(
        self,
        raffle: Raffle,
        numbers: Sequence[str],
        holder: Holder,
        created_at: datetime,
        is_placeholder: bool = False,
    ) -> InsertResult:
        if not numbers:
            return InsertResult()

        def _handler(conn):
            cur = conn.cursor()
            values_sql = ", ".join(
                ["(%s, %s, %s, %s, %s, %s, %s, 'reservado', %s, %s)"] * len(numbers)
            )
            params: list = []
            for number in numbers:
                params.extend(
                    [
                        uuid.uuid4(),
                        raffle.id,
                        number,
                        holder.name,
                        holder.national_id,
                        holder.phone,
                        holder.email,
                        created_at,
                        is_placeholder,
                    ]
                )
            cur.execute(
                f"""
                INSERT INTO tickets (
                    id, raffle_id, numero_ticket, holder_name, holder_national_id,
                    holder_phone, holder_email, status, created_at, is_placeholder
                )
                VALUES {values_sql}
                ON CONFLICT (raffle_id, numero_ticket) DO NOTHING
                RETURNING {TICKET_COLUMNS}
                """,
                params,
            )
            created = [ticket_from_row(row) for row in rows_as_dicts(cur)]
            cur.close()
            return created

        created = run_transaction(_handler)
        inserted = {ticket.numero_ticket for ticket in created}
        conflicts = [number for number in numbers if number not in inserted]
        return InsertResult(created=created, conflicts=conflicts)

    def delete_unpaid(self, ticket_ids: Sequence[uuid.UUID]) -> list[Ticket]:
        if not ticket_ids:
            return []

        def _handler(conn):
            cur = conn.cursor()
            cur.execute(
                f"""
                DELETE FROM tickets
                WHERE id IN ({_placeholders(ticket_ids)})
                  AND status = 'reservado'
                  AND payment_id IS NULL
                  AND locked_by_payment = false
                RETURNING {TICKET_COLUMNS}
                """,
                list(ticket_ids),
            )
            released = [ticket_from_row(row) for row in rows_as_dicts(cur)]
            cur.close()
            return released

        return run_transaction(_handler)

    def transition(
        self,
        ticket_ids: Sequence[uuid.UUID],
        planner: TransitionPlanner,
        from_status: str,
        to_status: str,
        payment_id: Optional[uuid.UUID] = None,
        verified_at: Optional[datetime] = None,
    ) -> list[Ticket]:
        if not ticket_ids:
            return []

        def _handler(conn):
            cur = conn.cursor()
            if payment_id is not None:
                _lock_payment(cur, payment_id)
            tickets = _select_for_update(cur, ticket_ids)
            _require_all(tickets, ticket_ids)
            to_update = planner(tickets)
            if to_update:
                cur.execute(
                    f"""
                    UPDATE tickets
                    SET status = %s,
                        payment_id = COALESCE(%s, payment_id),
                        verified_at = COALESCE(%s, verified_at),
                        locked_by_payment = false
                    WHERE id IN ({_placeholders(to_update)})
                      AND status = %s
                    """,
                    [to_status, payment_id, verified_at, *to_update, from_status],
                )
                tickets = _select_for_update(cur, ticket_ids)
            cur.close()
            return tickets

        return run_transaction(_handler)

    def release_expired(self, cutoff: datetime) -> list[Ticket]:
        statuses = list(CONFIRMING_PAYMENT_STATUSES)

        def _handler(conn):
            cur = conn.cursor()
            # Single conditional statement: a payment landing concurrently
            # either commits first (row no longer matches) or waits for us.
            cur.execute(
                f"""
                DELETE FROM tickets t
                WHERE t.status = 'reservado'
                  AND t.created_at < %s
                  AND t.is_placeholder = false
                  AND t.locked_by_payment = false
                  AND NOT EXISTS (
                      SELECT 1
                      FROM payments p
                      WHERE p.id = t.payment_id
                        AND p.status IN ({_placeholders(statuses)})
                  )
                RETURNING {TICKET_COLUMNS}
                """,
                [cutoff, *statuses],
            )
            released = [ticket_from_row(row) for row in rows_as_dicts(cur)]
            cur.close()
            return released

        return run_transaction(_handler)

    def lock_for_payment(
        self, ticket_ids: Sequence[uuid.UUID], payment_id: uuid.UUID
    ) -> list[Ticket]:
        if not ticket_ids:
            return []

        def _handler(conn):
            cur = conn.cursor()
            _lock_payment(cur, payment_id)
            tickets = _select_for_update(cur, ticket_ids)
            _require_all(tickets, ticket_ids)
            for ticket in tickets:
                if ticket.status != TicketStatus.RESERVED.value:
                    raise InvalidTransition(ticket.id, ticket.status, "bloqueado_por_pago")
                if ticket.payment_id is not None and ticket.payment_id != payment_id:
                    raise InvalidTransition(ticket.id, "bloqueado_por_pago", "bloqueado_por_pago")
            cur.execute(
                f"""
                UPDATE tickets
                SET locked_by_payment = true,
                    payment_id = %s
                WHERE id IN ({_placeholders(ticket_ids)})
                """,
                [payment_id, *ticket_ids],
            )
            tickets = _select_for_update(cur, ticket_ids)
            cur.close()
            return tickets

        return run_transaction(_handler)

    def clear_payment_lock(self, payment_id: uuid.UUID) -> int:
        def _handler(conn):
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE tickets
                SET locked_by_payment = false,
                    payment_id = NULL
                WHERE payment_id = %s AND status = 'reservado'
                """,
                (payment_id,),
            )
            cleared = cur.rowcount
            cur.close()
            return cleared

        return run_transaction(_handler)

    def assign_holder(self, ticket_id: uuid.UUID, holder: Holder) -> Ticket:
        def _handler(conn):
            cur = conn.cursor()
            tickets = _select_for_update(cur, [ticket_id])
            _require_all(tickets, [ticket_id])
            ticket = tickets[0]
            if not ticket.is_placeholder or ticket.status != TicketStatus.RESERVED.value:
                raise InvalidTransition(ticket.id, ticket.status, "asignado")
            cur.execute(
                f"""
                UPDATE tickets
                SET holder_name = %s,
                    holder_national_id = %s,
                    holder_phone = %s,
                    holder_email = %s
                WHERE id = %s
                RETURNING {TICKET_COLUMNS}
                """,
                (holder.name, holder.national_id, holder.phone, holder.email, ticket_id),
            )
            updated = ticket_from_row(rows_as_dicts(cur)[0])
            cur.close()
            return updated

        return run_transaction(_handler)
