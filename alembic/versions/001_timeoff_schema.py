"""001 – Time-off schema: directory, policies, balances, requests, audit log.

Revision ID: 001_timeoff_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+05:30
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = "001_timeoff_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Enum columns are VARCHAR(20) guarded by CHECK constraints so new values
# never need an ALTER TYPE.
ENUM_CHECKS: list[tuple[str, str, list[str]]] = [
    ("employees", "role", ["employee", "manager", "hr", "admin"]),
    (
        "leave_policies",
        "leave_type",
        [
            "annual", "earned", "casual", "sick", "maternity", "paternity",
            "bereavement", "compensatory", "unpaid", "emergency",
        ],
    ),
    ("leave_policies", "accrual_type", ["yearly", "monthly", "quarterly"]),
    ("leave_policies", "approval_level", ["auto", "manager", "hr", "both"]),
    ("leave_requests", "status", ["pending", "approved", "rejected", "cancelled"]),
    ("leave_requests", "manager_approval_status", ["pending", "approved", "rejected"]),
    ("leave_requests", "hr_approval_status", ["pending", "approved", "rejected"]),
    ("leave_requests", "half_day_session", ["first_half", "second_half"]),
    ("leave_requests", "priority", ["low", "medium", "high"]),
    (
        "leave_audit_logs",
        "action",
        ["created", "updated", "approved", "rejected", "cancelled"],
    ),
]


def _add_check(table: str, column: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(
        f"ALTER TABLE {table} ADD CONSTRAINT ck_{table}_{column} "
        f"CHECK ({column} IN ({vals}))"
    )


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── 1. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id                   UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code        VARCHAR(20)  NOT NULL UNIQUE,
            first_name           VARCHAR(100) NOT NULL,
            last_name            VARCHAR(100) NOT NULL,
            email                VARCHAR(255) NOT NULL UNIQUE,
            department           VARCHAR(100),
            location             VARCHAR(100),
            job_title            VARCHAR(200),
            role                 VARCHAR(20) NOT NULL DEFAULT 'employee',
            reporting_manager_id UUID REFERENCES employees(id),
            hire_date            DATE NOT NULL,
            is_active            BOOLEAN DEFAULT TRUE,
            created_at           TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.create_index("ix_employees_department", "employees", ["department"])
    op.create_index(
        "ix_employees_reporting_manager", "employees", ["reporting_manager_id"]
    )

    # ── 2. holidays ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE holidays (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(150) NOT NULL,
            date        DATE NOT NULL,
            fiscal_year INTEGER NOT NULL,
            location    VARCHAR(100),
            is_active   BOOLEAN DEFAULT TRUE,
            CONSTRAINT uq_holiday_date_location UNIQUE (date, location)
        )
    """)
    op.create_index("ix_holidays_fiscal_year", "holidays", ["fiscal_year"])

    # ── 3. leave_policies ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_policies (
            id                        UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            code                      VARCHAR(10)  NOT NULL UNIQUE,
            name                      VARCHAR(100) NOT NULL,
            leave_type                VARCHAR(20)  NOT NULL,
            description               TEXT,
            quota                     NUMERIC(5,1),
            accrual_type              VARCHAR(20) DEFAULT 'yearly',
            carry_forward             BOOLEAN DEFAULT FALSE,
            max_carry_forward         NUMERIC(5,1),
            carry_forward_expiry_days INTEGER,
            allow_negative            BOOLEAN DEFAULT FALSE,
            max_negative_allowed      NUMERIC(5,1),
            half_day_allowed          BOOLEAN DEFAULT FALSE,
            documentation_required    BOOLEAN DEFAULT FALSE,
            documentation_rules       JSONB,
            notice_period_days        INTEGER DEFAULT 0,
            auto_approval_enabled     BOOLEAN DEFAULT FALSE,
            auto_approval_conditions  JSONB,
            approval_level            VARCHAR(20) DEFAULT 'manager',
            applicable_locations      JSONB DEFAULT '[]'::jsonb,
            applicable_departments    JSONB DEFAULT '[]'::jsonb,
            applicable_roles          JSONB DEFAULT '[]'::jsonb,
            effective_from            DATE,
            effective_until           DATE,
            version                   INTEGER NOT NULL DEFAULT 1,
            is_active                 BOOLEAN DEFAULT TRUE,
            created_by                UUID,
            created_at                TIMESTAMPTZ DEFAULT NOW(),
            updated_at                TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 4. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id       UUID NOT NULL REFERENCES employees(id),
            policy_id         UUID NOT NULL REFERENCES leave_policies(id),
            fiscal_year       INTEGER NOT NULL,
            total_entitlement NUMERIC(6,1) NOT NULL DEFAULT 0,
            carried_forward   NUMERIC(6,1) NOT NULL DEFAULT 0,
            used_leaves       NUMERIC(6,1) NOT NULL DEFAULT 0,
            pending_leaves    NUMERIC(6,1) NOT NULL DEFAULT 0,
            available_balance NUMERIC(6,1) NOT NULL DEFAULT 0,
            version           INTEGER NOT NULL,
            last_updated      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance UNIQUE (employee_id, policy_id, fiscal_year),
            CONSTRAINT ck_leave_balance_non_negative
                CHECK (used_leaves >= 0 AND pending_leaves >= 0)
        )
    """)

    # ── 5. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id                      UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id             UUID NOT NULL REFERENCES employees(id),
            policy_id               UUID NOT NULL REFERENCES leave_policies(id),
            leave_type              VARCHAR(20) NOT NULL,
            start_date              DATE NOT NULL,
            end_date                DATE NOT NULL,
            is_half_day             BOOLEAN DEFAULT FALSE,
            half_day_session        VARCHAR(20),
            total_days              NUMERIC(5,1) NOT NULL,
            business_days           NUMERIC(5,1) NOT NULL,
            fiscal_year             INTEGER NOT NULL,
            reason                  TEXT NOT NULL,
            work_handover           TEXT,
            attachments             JSONB DEFAULT '[]'::jsonb,
            emergency_contact       JSONB,
            status                  VARCHAR(20) NOT NULL DEFAULT 'pending',
            manager_approval_status VARCHAR(20),
            manager_approved_by     UUID REFERENCES employees(id),
            manager_approved_at     TIMESTAMPTZ,
            manager_comments        TEXT,
            hr_approval_status      VARCHAR(20),
            hr_approved_by          UUID REFERENCES employees(id),
            hr_approved_at          TIMESTAMPTZ,
            hr_comments             TEXT,
            final_approved_by       UUID REFERENCES employees(id),
            final_approved_at       TIMESTAMPTZ,
            rejected_by             UUID REFERENCES employees(id),
            rejected_at             TIMESTAMPTZ,
            rejection_reason        TEXT,
            cancelled_by            UUID REFERENCES employees(id),
            cancelled_at            TIMESTAMPTZ,
            cancellation_reason     TEXT,
            is_backdated            BOOLEAN DEFAULT FALSE,
            is_emergency            BOOLEAN DEFAULT FALSE,
            priority                VARCHAR(20) DEFAULT 'low',
            version                 INTEGER NOT NULL,
            applied_at              TIMESTAMPTZ DEFAULT NOW(),
            updated_at              TIMESTAMPTZ DEFAULT NOW(),
            CHECK (start_date <= end_date)
        )
    """)
    op.create_index(
        "ix_leave_requests_employee_dates",
        "leave_requests",
        ["employee_id", "start_date", "end_date"],
    )
    op.create_index("ix_leave_requests_status", "leave_requests", ["status"])
    op.create_index("ix_leave_requests_policy", "leave_requests", ["policy_id"])

    # ── 6. leave_audit_logs (append-only) ─────────────────────────────────
    op.execute("""
        CREATE TABLE leave_audit_logs (
            id                UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            leave_request_id  UUID NOT NULL REFERENCES leave_requests(id),
            sequence          INTEGER NOT NULL,
            action            VARCHAR(20) NOT NULL,
            performed_by      VARCHAR(64) NOT NULL,
            performed_by_role VARCHAR(32) NOT NULL,
            context           JSONB,
            timestamp         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_leave_audit_request_seq UNIQUE (leave_request_id, sequence)
        )
    """)
    op.create_index("ix_leave_audit_request", "leave_audit_logs", ["leave_request_id"])
    op.create_index("ix_leave_audit_timestamp", "leave_audit_logs", ["timestamp"])

    # Audit rows are never updated or deleted
    op.execute("""
        CREATE RULE leave_audit_logs_no_update AS
            ON UPDATE TO leave_audit_logs DO INSTEAD NOTHING
    """)
    op.execute("""
        CREATE RULE leave_audit_logs_no_delete AS
            ON DELETE TO leave_audit_logs DO INSTEAD NOTHING
    """)

    # ── Enum CHECK constraints ────────────────────────────────────────────
    for table, column, values in ENUM_CHECKS:
        _add_check(table, column, values)

    # ── Seed: default policies ────────────────────────────────────────────
    policies = sa.table(
        "leave_policies",
        sa.column("code", sa.String),
        sa.column("name", sa.String),
        sa.column("leave_type", sa.String),
        sa.column("quota", sa.Numeric),
        sa.column("approval_level", sa.String),
        sa.column("notice_period_days", sa.Integer),
        sa.column("half_day_allowed", sa.Boolean),
    )
    op.bulk_insert(
        policies,
        [
            {"code": "AL", "name": "Annual Leave", "leave_type": "annual",
             "quota": 18, "approval_level": "manager", "notice_period_days": 7,
             "half_day_allowed": True},
            {"code": "CL", "name": "Casual Leave", "leave_type": "casual",
             "quota": 12, "approval_level": "manager", "notice_period_days": 1,
             "half_day_allowed": True},
            {"code": "SL", "name": "Sick Leave", "leave_type": "sick",
             "quota": 12, "approval_level": "manager", "notice_period_days": 0,
             "half_day_allowed": True},
            {"code": "ML", "name": "Maternity Leave", "leave_type": "maternity",
             "quota": 182, "approval_level": "both", "notice_period_days": 30,
             "half_day_allowed": False},
        ],
    )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "leave_audit_logs",
        "leave_requests",
        "leave_balances",
        "leave_policies",
        "holidays",
        "employees",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")
