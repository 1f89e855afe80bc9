"""001 – Initial schema: directory, absences, attendance, leave ledger, seed data.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000+02:00
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Enums are stored as VARCHAR (native_enum=False in the models); the allowed
# values are enforced with CHECK constraints instead of PG enum types.
CHECKS: list[tuple[str, str, str, list[str]]] = [
    ("users", "ck_users_role", "role", ["employee", "manager", "admin"]),
    ("absences", "ck_absences_type", "type",
     ["SICK", "VACATION", "PERSONAL", "FORMATION", "OTHER", "RTT"]),
    ("absences", "ck_absences_status", "status", ["PENDING", "APPROVED", "REJECTED"]),
    ("absence_days", "ck_absence_days_period", "period", ["AM", "PM", "FULL_DAY"]),
    ("clock_entries", "ck_clock_entries_kind", "kind", ["IN", "OUT"]),
    ("work_schedules", "ck_work_schedules_day", "day_of_week",
     ["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"]),
    ("work_schedules", "ck_work_schedules_period", "period", ["AM", "PM"]),
    ("leave_ledger", "ck_leave_ledger_kind", "kind",
     ["ACCRUAL", "DEBIT", "ADJUSTMENT", "CARRYOVER_EXPIRE"]),
]


def _add_check(table: str, name: str, column: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"ALTER TABLE {table} ADD CONSTRAINT {name} CHECK ({column} IN ({vals}))")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── 1. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email       VARCHAR(255) NOT NULL UNIQUE,
            first_name  VARCHAR(100),
            last_name   VARCHAR(100),
            role        VARCHAR(20) NOT NULL DEFAULT 'employee',
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. teams / team_members ───────────────────────────────────────────
    op.execute("""
        CREATE TABLE teams (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name        VARCHAR(100) NOT NULL,
            description TEXT
        )
    """)
    op.execute("""
        CREATE TABLE team_members (
            id       UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            team_id  UUID NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
            user_id  UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            CONSTRAINT uq_team_member UNIQUE (team_id, user_id)
        )
    """)
    op.execute("CREATE INDEX idx_team_members_user ON team_members(user_id)")

    # ── 3. absences / absence_days ────────────────────────────────────────
    op.execute("""
        CREATE TABLE absences (
            id                       UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id                  UUID NOT NULL REFERENCES users(id),
            start_date               DATE NOT NULL,
            end_date                 DATE NOT NULL,
            type                     VARCHAR(20) NOT NULL,
            reason                   TEXT,
            supporting_document_url  VARCHAR(500),
            status                   VARCHAR(20) NOT NULL DEFAULT 'PENDING',
            approved_by              UUID REFERENCES users(id),
            approved_at              TIMESTAMPTZ,
            created_at               TIMESTAMPTZ DEFAULT NOW(),
            updated_at               TIMESTAMPTZ DEFAULT NOW(),
            CHECK (start_date <= end_date)
        )
    """)
    op.execute("CREATE INDEX idx_absences_user_start ON absences(user_id, start_date)")
    op.execute("""
        CREATE TABLE absence_days (
            id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            absence_id    UUID NOT NULL REFERENCES absences(id) ON DELETE CASCADE,
            absence_date  DATE NOT NULL,
            period        VARCHAR(20) DEFAULT 'FULL_DAY',
            start_time    TIME,
            end_time      TIME
        )
    """)
    op.execute("CREATE INDEX idx_absence_days_absence ON absence_days(absence_id, absence_date)")

    # ── 4. clock_entries / work_schedules ─────────────────────────────────
    op.execute("""
        CREATE TABLE clock_entries (
            id       UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id  UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            kind     VARCHAR(3) NOT NULL,
            at       TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("CREATE INDEX idx_clock_user_at ON clock_entries(user_id, at)")
    op.execute("""
        CREATE TABLE work_schedules (
            id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id      UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            day_of_week  VARCHAR(3) NOT NULL,
            period       VARCHAR(2) NOT NULL,
            start_time   TIME NOT NULL,
            end_time     TIME NOT NULL,
            CONSTRAINT uq_ws_user_day_period UNIQUE (user_id, day_of_week, period)
        )
    """)

    # ── 5. leave_types / leave_accounts ───────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            code   VARCHAR(20) PRIMARY KEY,
            label  VARCHAR(100) NOT NULL
        )
    """)
    op.execute("""
        CREATE TABLE leave_accounts (
            id                   UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id              UUID NOT NULL REFERENCES users(id),
            leave_type_code      VARCHAR(20) NOT NULL REFERENCES leave_types(code),
            opening_balance      NUMERIC(8,2) NOT NULL DEFAULT 0,
            accrual_per_month    NUMERIC(6,3) NOT NULL DEFAULT 0,
            max_carryover        NUMERIC(8,2),
            carryover_expire_on  DATE,
            created_at           TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_account UNIQUE (user_id, leave_type_code)
        )
    """)

    # ── 6. leave_ledger ───────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_ledger (
            id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            account_id            UUID NOT NULL REFERENCES leave_accounts(id) ON DELETE CASCADE,
            entry_date            DATE NOT NULL,
            kind                  VARCHAR(20) NOT NULL,
            amount                NUMERIC(9,3) NOT NULL,
            reference_absence_id  UUID REFERENCES absences(id),
            accrual_period        DATE,
            note                  VARCHAR(255),
            created_at            TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_ledger_reference_absence UNIQUE (reference_absence_id),
            CONSTRAINT uq_leave_ledger_accrual_period UNIQUE (account_id, accrual_period),
            CONSTRAINT ck_leave_ledger_amount_non_negative CHECK (amount >= 0)
        )
    """)
    op.execute("CREATE INDEX idx_ledger_account_date ON leave_ledger(account_id, entry_date)")

    # ── Value checks ──────────────────────────────────────────────────────
    for table, name, column, values in CHECKS:
        _add_check(table, name, column, values)

    # ── Seed data ─────────────────────────────────────────────────────────
    leave_types = sa.table(
        "leave_types",
        sa.column("code", sa.String),
        sa.column("label", sa.String),
    )
    op.bulk_insert(
        leave_types,
        [
            {"code": "VAC", "label": "Congés payés"},
            {"code": "RTT", "label": "RTT"},
        ],
    )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "leave_ledger",
        "leave_accounts",
        "leave_types",
        "work_schedules",
        "clock_entries",
        "absence_days",
        "absences",
        "team_members",
        "teams",
        "users",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")
