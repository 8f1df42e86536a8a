"""Persistence layer for subscriptions, invoices and the plan catalog."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import ContextManager, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .models import (
    BillingCycle,
    Feature,
    FeatureCode,
    Invoice,
    InvoiceStatus,
    Plan,
    Subscription,
    SubscriptionStatus,
)

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


class PlanRepository(Protocol):
    """Read access to the plan catalog."""

    def list_plans(self, *, active_only: bool = True) -> Sequence[Plan]:
        ...

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        ...

    def get_plan_by_name(self, name: str) -> Optional[Plan]:
        ...

    def list_features(self) -> Sequence[Feature]:
        ...


class EmployeeCounter(Protocol):
    """Source of truth for how many seats a company is actually using."""

    def count_active_by_company_id(self, company_id: str) -> int:
        ...


class SubscriptionRepository(Protocol):
    """Persistence operations for subscription rows."""

    def get(self, subscription_id: str) -> Optional[Subscription]:
        ...

    def get_by_company(self, company_id: str) -> Optional[Subscription]:
        ...

    def create(self, subscription: Subscription) -> Subscription:
        ...

    def update(self, subscription: Subscription) -> Subscription:
        ...

    def update_status(self, subscription_id: str, status: SubscriptionStatus) -> Optional[Subscription]:
        ...

    def set_pending_max_seats(self, subscription_id: str, seats: Optional[int]) -> Optional[Subscription]:
        """Schedule (or clear) a seat reduction; scheduling clears any pending plan."""

    def set_pending_plan(self, subscription_id: str, plan_id: Optional[str]) -> Optional[Subscription]:
        """Schedule (or clear) a plan downgrade; scheduling clears any pending seats."""

    def expire_trials(self, now: datetime) -> int:
        ...

    def transition_lapsed(
        self,
        *,
        from_statuses: Sequence[SubscriptionStatus],
        to_status: SubscriptionStatus,
        cutoff: datetime,
    ) -> int:
        """Move subscriptions whose period ended before ``cutoff``."""

    def list_due_pending_seats(self, now: datetime) -> Sequence[Subscription]:
        ...

    def apply_pending_max_seats(self, subscription_id: str) -> bool:
        ...

    def list_due_pending_plans(self, now: datetime) -> Sequence[Subscription]:
        ...

    def apply_pending_plan(self, subscription_id: str, *, max_seats: int) -> bool:
        ...


class InvoiceRepository(Protocol):
    """Persistence operations for invoices."""

    def create(self, invoice: Invoice) -> Invoice:
        ...

    def get(self, invoice_id: str) -> Optional[Invoice]:
        ...

    def get_by_gateway_id(self, gateway_invoice_id: str) -> Optional[Invoice]:
        ...

    def get_pending_for_subscription(self, subscription_id: str) -> Optional[Invoice]:
        ...

    def list_pending_for_subscription(self, subscription_id: str) -> Sequence[Invoice]:
        ...

    def list_by_company(self, company_id: str, *, limit: int = 20) -> Sequence[Invoice]:
        ...

    def mark_paid(
        self,
        invoice_id: str,
        *,
        paid_at: datetime,
        payment_method: Optional[str],
        payment_channel: Optional[str],
    ) -> bool:
        """Record payment; returns ``False`` when the invoice was already paid."""

    def transition_status(
        self,
        invoice_id: str,
        status: InvoiceStatus,
        *,
        from_status: InvoiceStatus = InvoiceStatus.PENDING,
    ) -> bool:
        ...

    def expire_stale(self, *, created_before: datetime) -> int:
        ...


@dataclass(frozen=True)
class TransactionScope:
    """Repositories bound to a single open transaction."""

    subscriptions: SubscriptionRepository
    invoices: InvoiceRepository


class SubscriptionStore(Protocol):
    """Everything the orchestrators need from storage."""

    subscriptions: SubscriptionRepository
    invoices: InvoiceRepository
    plans: PlanRepository
    employees: EmployeeCounter

    def transaction(self) -> ContextManager[TransactionScope]:
        """Open a unit of work; commits on success and rolls back on error."""


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


class _PostgresRepository:
    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, _managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
            finally:
                cursor.close()


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        id=str(row["id"]),
        company_id=str(row["company_id"]),
        plan_id=str(row["plan_id"]),
        pending_plan_id=str(row["pending_plan_id"]) if row.get("pending_plan_id") else None,
        status=SubscriptionStatus(row["status"]),
        max_seats=int(row["max_seats"]),
        pending_max_seats=row.get("pending_max_seats"),
        current_period_start=row["current_period_start"],
        current_period_end=row["current_period_end"],
        trial_ends_at=row.get("trial_ends_at"),
        billing_cycle=BillingCycle(row["billing_cycle"]),
        auto_renew=bool(row["auto_renew"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_invoice(row: dict) -> Invoice:
    return Invoice(
        id=str(row["id"]),
        company_id=str(row["company_id"]),
        subscription_id=str(row["subscription_id"]),
        plan_id=str(row["plan_id"]),
        amount=row["amount"],
        status=InvoiceStatus(row["status"]),
        is_prorated=bool(row["is_prorated"]),
        plan_snapshot_name=row["plan_snapshot_name"],
        price_per_seat_snapshot=row["price_per_seat_snapshot"],
        seat_count_snapshot=int(row["seat_count_snapshot"]),
        billing_cycle_snapshot=BillingCycle(row["billing_cycle_snapshot"]),
        period_start=row["period_start"],
        period_end=row["period_end"],
        gateway_invoice_id=row.get("xendit_invoice_id"),
        gateway_invoice_url=row.get("xendit_invoice_url"),
        gateway_expiry_date=row.get("xendit_expiry_date"),
        issue_date=row["issue_date"],
        paid_at=row.get("paid_at"),
        payment_method=row.get("payment_method"),
        payment_channel=row.get("payment_channel"),
        description=row.get("description"),
        notes=row.get("notes"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_feature(row: dict) -> Feature:
    return Feature(
        id=str(row["id"]),
        code=FeatureCode(row["code"]),
        name=row["name"],
        description=row.get("description"),
    )


def _row_to_plan(row: dict, features: Sequence[Feature]) -> Plan:
    return Plan(
        id=str(row["id"]),
        name=row["name"],
        price_per_seat=row["price_per_seat"],
        tier_level=int(row["tier_level"]),
        max_seats=row.get("max_seats"),
        is_active=bool(row["is_active"]),
        features=tuple(features),
    )


class PostgresPlanRepository(_PostgresRepository):
    """Plan catalog stored in ``subscription_plans`` / ``plan_features``."""

    def _features_by_plan(self, cursor: PgCursor, plan_ids: List[str]) -> Dict[str, List[Feature]]:
        grouped: Dict[str, List[Feature]] = {plan_id: [] for plan_id in plan_ids}
        if not plan_ids:
            return grouped
        cursor.execute(
            """
            SELECT pf.plan_id, f.id, f.code, f.name, f.description
            FROM plan_features pf
            JOIN features f ON f.id = pf.feature_id
            WHERE pf.plan_id::text = ANY(%s) AND pf.is_active = TRUE
            ORDER BY f.code
            """,
            (plan_ids,),
        )
        for row in cursor.fetchall():
            grouped.setdefault(str(row["plan_id"]), []).append(_row_to_feature(row))
        return grouped

    def _load(self, where: str, params: tuple) -> List[Plan]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT id, name, price_per_seat, tier_level, max_seats, is_active
                FROM subscription_plans
                {where}
                ORDER BY tier_level ASC
                """,
                params,
            )
            rows = cursor.fetchall()
            features = self._features_by_plan(cursor, [str(row["id"]) for row in rows])
            return [_row_to_plan(row, features.get(str(row["id"]), [])) for row in rows]

    def list_plans(self, *, active_only: bool = True) -> Sequence[Plan]:
        if active_only:
            return self._load("WHERE is_active = TRUE", ())
        return self._load("", ())

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        plans = self._load("WHERE id::text = %s", (plan_id,))
        return plans[0] if plans else None

    def get_plan_by_name(self, name: str) -> Optional[Plan]:
        plans = self._load("WHERE name = %s", (name,))
        return plans[0] if plans else None

    def list_features(self) -> Sequence[Feature]:
        with self._cursor() as cursor:
            cursor.execute("SELECT id, code, name, description FROM features ORDER BY code")
            return [_row_to_feature(row) for row in cursor.fetchall()]


class PostgresEmployeeCounter(_PostgresRepository):
    """Counts active, non-deleted employees of a company."""

    def count_active_by_company_id(self, company_id: str) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT COUNT(*) AS total
                FROM employees
                WHERE company_id = %s AND status = 'active' AND deleted_at IS NULL
                """,
                (company_id,),
            )
            row = cursor.fetchone()
            return int(row["total"]) if row else 0


class PostgresSubscriptionRepository(_PostgresRepository):
    """Concrete repository persisting subscriptions in PostgreSQL."""

    def get(self, subscription_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM subscriptions WHERE id = %s LIMIT 1", (subscription_id,))
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def get_by_company(self, company_id: str) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM subscriptions WHERE company_id = %s LIMIT 1",
                (company_id,),
            )
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def create(self, subscription: Subscription) -> Subscription:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO subscriptions (
                    id, company_id, plan_id, status, max_seats,
                    current_period_start, current_period_end, trial_ends_at,
                    billing_cycle, auto_renew
                )
                VALUES (%(id)s, %(company_id)s, %(plan_id)s, %(status)s, %(max_seats)s,
                        %(current_period_start)s, %(current_period_end)s, %(trial_ends_at)s,
                        %(billing_cycle)s, %(auto_renew)s)
                RETURNING *
                """,
                {
                    "id": subscription.id,
                    "company_id": subscription.company_id,
                    "plan_id": subscription.plan_id,
                    "status": subscription.status.value,
                    "max_seats": subscription.max_seats,
                    "current_period_start": subscription.current_period_start,
                    "current_period_end": subscription.current_period_end,
                    "trial_ends_at": subscription.trial_ends_at,
                    "billing_cycle": subscription.billing_cycle.value,
                    "auto_renew": subscription.auto_renew,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist subscription")
            return _row_to_subscription(row)

    def update(self, subscription: Subscription) -> Subscription:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscriptions SET
                    plan_id = %(plan_id)s,
                    pending_plan_id = %(pending_plan_id)s,
                    status = %(status)s,
                    max_seats = %(max_seats)s,
                    pending_max_seats = %(pending_max_seats)s,
                    current_period_start = %(current_period_start)s,
                    current_period_end = %(current_period_end)s,
                    trial_ends_at = %(trial_ends_at)s,
                    billing_cycle = %(billing_cycle)s,
                    auto_renew = %(auto_renew)s,
                    updated_at = NOW()
                WHERE id = %(id)s
                RETURNING *
                """,
                {
                    "id": subscription.id,
                    "plan_id": subscription.plan_id,
                    "pending_plan_id": subscription.pending_plan_id,
                    "status": subscription.status.value,
                    "max_seats": subscription.max_seats,
                    "pending_max_seats": subscription.pending_max_seats,
                    "current_period_start": subscription.current_period_start,
                    "current_period_end": subscription.current_period_end,
                    "trial_ends_at": subscription.trial_ends_at,
                    "billing_cycle": subscription.billing_cycle.value,
                    "auto_renew": subscription.auto_renew,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to update subscription")
            return _row_to_subscription(row)

    def _update_returning(self, sql: str, params: tuple) -> Optional[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(sql, params)
            row = cursor.fetchone()
            return _row_to_subscription(row) if row else None

    def update_status(self, subscription_id: str, status: SubscriptionStatus) -> Optional[Subscription]:
        return self._update_returning(
            "UPDATE subscriptions SET status = %s, updated_at = NOW() WHERE id = %s RETURNING *",
            (status.value, subscription_id),
        )

    def set_pending_max_seats(self, subscription_id: str, seats: Optional[int]) -> Optional[Subscription]:
        if seats is None:
            return self._update_returning(
                """
                UPDATE subscriptions SET pending_max_seats = NULL, updated_at = NOW()
                WHERE id = %s RETURNING *
                """,
                (subscription_id,),
            )
        return self._update_returning(
            """
            UPDATE subscriptions
            SET pending_max_seats = %s, pending_plan_id = NULL, updated_at = NOW()
            WHERE id = %s RETURNING *
            """,
            (seats, subscription_id),
        )

    def set_pending_plan(self, subscription_id: str, plan_id: Optional[str]) -> Optional[Subscription]:
        if plan_id is None:
            return self._update_returning(
                """
                UPDATE subscriptions SET pending_plan_id = NULL, updated_at = NOW()
                WHERE id = %s RETURNING *
                """,
                (subscription_id,),
            )
        return self._update_returning(
            """
            UPDATE subscriptions
            SET pending_plan_id = %s, pending_max_seats = NULL, updated_at = NOW()
            WHERE id = %s RETURNING *
            """,
            (plan_id, subscription_id),
        )

    def expire_trials(self, now: datetime) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscriptions SET status = 'expired', updated_at = NOW()
                WHERE status = 'trial'
                  AND COALESCE(trial_ends_at, current_period_end) < %s
                """,
                (now,),
            )
            return cursor.rowcount

    def transition_lapsed(
        self,
        *,
        from_statuses: Sequence[SubscriptionStatus],
        to_status: SubscriptionStatus,
        cutoff: datetime,
    ) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscriptions SET status = %s, updated_at = NOW()
                WHERE current_period_end < %s
                  AND status::text = ANY(%s)
                """,
                (to_status.value, cutoff, [status.value for status in from_statuses]),
            )
            return cursor.rowcount

    def list_due_pending_seats(self, now: datetime) -> Sequence[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM subscriptions
                WHERE pending_max_seats IS NOT NULL
                  AND current_period_end <= %s
                  AND status IN ('active', 'past_due', 'cancelled')
                ORDER BY current_period_end ASC
                """,
                (now,),
            )
            return [_row_to_subscription(row) for row in cursor.fetchall()]

    def apply_pending_max_seats(self, subscription_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscriptions
                SET max_seats = pending_max_seats, pending_max_seats = NULL, updated_at = NOW()
                WHERE id = %s AND pending_max_seats IS NOT NULL
                """,
                (subscription_id,),
            )
            return cursor.rowcount > 0

    def list_due_pending_plans(self, now: datetime) -> Sequence[Subscription]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM subscriptions
                WHERE pending_plan_id IS NOT NULL
                  AND current_period_end <= %s
                ORDER BY current_period_end ASC
                """,
                (now,),
            )
            return [_row_to_subscription(row) for row in cursor.fetchall()]

    def apply_pending_plan(self, subscription_id: str, *, max_seats: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE subscriptions
                SET plan_id = pending_plan_id, pending_plan_id = NULL,
                    max_seats = %s, updated_at = NOW()
                WHERE id = %s AND pending_plan_id IS NOT NULL
                """,
                (max_seats, subscription_id),
            )
            return cursor.rowcount > 0


class PostgresInvoiceRepository(_PostgresRepository):
    """Concrete repository persisting invoices in PostgreSQL."""

    def create(self, invoice: Invoice) -> Invoice:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO invoices (
                    id, company_id, subscription_id, plan_id,
                    xendit_invoice_id, xendit_invoice_url, xendit_expiry_date,
                    amount, is_prorated, plan_snapshot_name, price_per_seat_snapshot,
                    seat_count_snapshot, billing_cycle_snapshot,
                    period_start, period_end, status, issue_date, description, notes
                )
                VALUES (%(id)s, %(company_id)s, %(subscription_id)s, %(plan_id)s,
                        %(gateway_invoice_id)s, %(gateway_invoice_url)s, %(gateway_expiry_date)s,
                        %(amount)s, %(is_prorated)s, %(plan_snapshot_name)s, %(price_per_seat_snapshot)s,
                        %(seat_count_snapshot)s, %(billing_cycle_snapshot)s,
                        %(period_start)s, %(period_end)s, %(status)s, %(issue_date)s,
                        %(description)s, %(notes)s)
                RETURNING *
                """,
                {
                    "id": invoice.id,
                    "company_id": invoice.company_id,
                    "subscription_id": invoice.subscription_id,
                    "plan_id": invoice.plan_id,
                    "gateway_invoice_id": invoice.gateway_invoice_id,
                    "gateway_invoice_url": invoice.gateway_invoice_url,
                    "gateway_expiry_date": invoice.gateway_expiry_date,
                    "amount": invoice.amount,
                    "is_prorated": invoice.is_prorated,
                    "plan_snapshot_name": invoice.plan_snapshot_name,
                    "price_per_seat_snapshot": invoice.price_per_seat_snapshot,
                    "seat_count_snapshot": invoice.seat_count_snapshot,
                    "billing_cycle_snapshot": invoice.billing_cycle_snapshot.value,
                    "period_start": invoice.period_start,
                    "period_end": invoice.period_end,
                    "status": invoice.status.value,
                    "issue_date": invoice.issue_date,
                    "description": invoice.description,
                    "notes": invoice.notes,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist invoice")
            return _row_to_invoice(row)

    def _fetch_one(self, sql: str, params: tuple) -> Optional[Invoice]:
        with self._cursor() as cursor:
            cursor.execute(sql, params)
            row = cursor.fetchone()
            return _row_to_invoice(row) if row else None

    def get(self, invoice_id: str) -> Optional[Invoice]:
        return self._fetch_one("SELECT * FROM invoices WHERE id = %s LIMIT 1", (invoice_id,))

    def get_by_gateway_id(self, gateway_invoice_id: str) -> Optional[Invoice]:
        return self._fetch_one(
            "SELECT * FROM invoices WHERE xendit_invoice_id = %s LIMIT 1",
            (gateway_invoice_id,),
        )

    def get_pending_for_subscription(self, subscription_id: str) -> Optional[Invoice]:
        return self._fetch_one(
            """
            SELECT * FROM invoices
            WHERE subscription_id = %s AND status = 'pending'
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (subscription_id,),
        )

    def list_pending_for_subscription(self, subscription_id: str) -> Sequence[Invoice]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM invoices
                WHERE subscription_id = %s AND status = 'pending'
                ORDER BY created_at ASC
                """,
                (subscription_id,),
            )
            return [_row_to_invoice(row) for row in cursor.fetchall()]

    def list_by_company(self, company_id: str, *, limit: int = 20) -> Sequence[Invoice]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM invoices
                WHERE company_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (company_id, limit),
            )
            return [_row_to_invoice(row) for row in cursor.fetchall()]

    def mark_paid(
        self,
        invoice_id: str,
        *,
        paid_at: datetime,
        payment_method: Optional[str],
        payment_channel: Optional[str],
    ) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE invoices
                SET status = 'paid', paid_at = %s, payment_method = %s,
                    payment_channel = %s, updated_at = NOW()
                WHERE id = %s AND status <> 'paid'
                """,
                (paid_at, payment_method, payment_channel, invoice_id),
            )
            return cursor.rowcount > 0

    def transition_status(
        self,
        invoice_id: str,
        status: InvoiceStatus,
        *,
        from_status: InvoiceStatus = InvoiceStatus.PENDING,
    ) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE invoices SET status = %s, updated_at = NOW()
                WHERE id = %s AND status = %s
                """,
                (status.value, invoice_id, from_status.value),
            )
            return cursor.rowcount > 0

    def expire_stale(self, *, created_before: datetime) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE invoices SET status = 'expired', updated_at = NOW()
                WHERE status = 'pending'
                  AND created_at < %s
                """,
                (created_before,),
            )
            return cursor.rowcount


class PostgresSubscriptionStore:
    """:class:`SubscriptionStore` backed by the application connection factory."""

    def __init__(self) -> None:
        self.subscriptions = PostgresSubscriptionRepository()
        self.invoices = PostgresInvoiceRepository()
        self.plans = PostgresPlanRepository()
        self.employees = PostgresEmployeeCounter()

    @contextmanager
    def transaction(self) -> Iterator[TransactionScope]:
        with managed_connection() as (connection, _managed):
            yield TransactionScope(
                subscriptions=PostgresSubscriptionRepository(conn=connection),
                invoices=PostgresInvoiceRepository(conn=connection),
            )


__all__ = [
    "EmployeeCounter",
    "InvoiceRepository",
    "PlanRepository",
    "PostgresEmployeeCounter",
    "PostgresInvoiceRepository",
    "PostgresPlanRepository",
    "PostgresSubscriptionRepository",
    "PostgresSubscriptionStore",
    "SubscriptionRepository",
    "SubscriptionStore",
    "TransactionScope",
    "managed_connection",
]
