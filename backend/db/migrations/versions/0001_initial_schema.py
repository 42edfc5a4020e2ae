"""Initial production schema for the order-desk backend."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from alembic import op

logger = logging.getLogger(__name__)

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


ENUM_DDL: tuple[str, ...] = (
    "CREATE TYPE account_role_enum AS ENUM ('user', 'admin');",
    "CREATE TYPE account_status_enum AS ENUM ('pending', 'active', 'suspended');",
    "CREATE TYPE ledger_direction_enum AS ENUM ('credit', 'debit');",
    "CREATE TYPE audit_result_enum AS ENUM ('success', 'fail');",
    "CREATE TYPE order_status_enum AS ENUM ('pending', 'processing', 'completed', 'failed');",
    "CREATE TYPE topup_status_enum AS ENUM ('pending', 'approved', 'rejected');",
    "CREATE TYPE otp_purpose_enum AS ENUM ('login', 'device_trust');",
)

TABLE_DDL: tuple[str, ...] = (
    """
    CREATE TABLE account (
        account_id UUID NOT NULL DEFAULT gen_random_uuid(),
        email TEXT NOT NULL,
        role account_role_enum NOT NULL DEFAULT 'user',
        status account_status_enum NOT NULL DEFAULT 'pending',
        credit_balance NUMERIC(12,2) NOT NULL DEFAULT 0,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_account PRIMARY KEY (account_id),
        CONSTRAINT uq_account_email UNIQUE (email),
        CONSTRAINT ck_account_email_lower CHECK (email = lower(email)),
        CONSTRAINT ck_account_email_not_blank CHECK (length(btrim(email)) > 0),
        CONSTRAINT ck_account_credit_balance_nonneg CHECK (credit_balance >= 0)
    );
    """,
    """
    CREATE TABLE trusted_device (
        device_id UUID NOT NULL DEFAULT gen_random_uuid(),
        account_id UUID NOT NULL,
        device_token_hash CHAR(64) NOT NULL,
        device_fingerprint CHAR(64),
        device_name TEXT,
        expires_at_utc TIMESTAMPTZ NOT NULL,
        last_used_at_utc TIMESTAMPTZ,
        revoked_at_utc TIMESTAMPTZ,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_trusted_device PRIMARY KEY (device_id),
        CONSTRAINT fk_trusted_device_account FOREIGN KEY (account_id)
            REFERENCES account (account_id) ON DELETE CASCADE,
        CONSTRAINT ck_trusted_device_expiry_after_creation CHECK (expires_at_utc > created_at_utc)
    );
    """,
    """
    CREATE TABLE refresh_token (
        token_id UUID NOT NULL,
        account_id UUID NOT NULL,
        device_id UUID,
        token_hash CHAR(64) NOT NULL,
        expires_at_utc TIMESTAMPTZ NOT NULL,
        revoked_at_utc TIMESTAMPTZ,
        rotated_from UUID,
        rotated_to UUID,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_refresh_token PRIMARY KEY (token_id),
        CONSTRAINT fk_refresh_token_account FOREIGN KEY (account_id)
            REFERENCES account (account_id) ON DELETE CASCADE,
        CONSTRAINT fk_refresh_token_device FOREIGN KEY (device_id)
            REFERENCES trusted_device (device_id) ON DELETE CASCADE,
        CONSTRAINT ck_refresh_token_no_self_rotation CHECK (rotated_from IS NULL OR rotated_from <> token_id)
    );
    """,
    """
    CREATE TABLE customer_order (
        order_id UUID NOT NULL DEFAULT gen_random_uuid(),
        account_id UUID NOT NULL,
        service_type TEXT NOT NULL,
        order_status order_status_enum NOT NULL DEFAULT 'pending',
        tracking_code TEXT,
        error_code TEXT,
        error_reason TEXT,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_customer_order PRIMARY KEY (order_id),
        CONSTRAINT fk_customer_order_account FOREIGN KEY (account_id)
            REFERENCES account (account_id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE balance_transaction (
        entry_id UUID NOT NULL,
        entry_seq BIGINT GENERATED ALWAYS AS IDENTITY,
        account_id UUID NOT NULL,
        order_id UUID,
        amount NUMERIC(12,2) NOT NULL,
        direction ledger_direction_enum NOT NULL,
        balance_after NUMERIC(12,2) NOT NULL,
        reason TEXT,
        reference TEXT,
        acting_admin_id UUID,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_balance_transaction PRIMARY KEY (entry_id),
        CONSTRAINT uq_balance_transaction_entry_seq UNIQUE (entry_seq),
        CONSTRAINT fk_balance_transaction_account FOREIGN KEY (account_id)
            REFERENCES account (account_id) ON UPDATE RESTRICT ON DELETE RESTRICT,
        CONSTRAINT fk_balance_transaction_order FOREIGN KEY (order_id)
            REFERENCES customer_order (order_id) ON DELETE SET NULL,
        CONSTRAINT ck_balance_transaction_amount_nonzero CHECK (amount <> 0),
        CONSTRAINT ck_balance_transaction_balance_after_nonneg CHECK (balance_after >= 0),
        CONSTRAINT ck_balance_transaction_sign_matches_direction CHECK (
            (direction = 'credit' AND amount > 0) OR (direction = 'debit' AND amount < 0)
        )
    );
    """,
    """
    CREATE TABLE login_audit (
        audit_id UUID NOT NULL DEFAULT gen_random_uuid(),
        account_id UUID,
        ip TEXT,
        user_agent TEXT,
        device_fingerprint CHAR(64),
        result audit_result_enum NOT NULL,
        reason TEXT,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_login_audit PRIMARY KEY (audit_id),
        CONSTRAINT fk_login_audit_account FOREIGN KEY (account_id)
            REFERENCES account (account_id) ON DELETE SET NULL
    );
    """,
    """
    CREATE TABLE admin_audit (
        audit_id UUID NOT NULL DEFAULT gen_random_uuid(),
        admin_id UUID,
        action TEXT NOT NULL,
        target_id TEXT,
        payload JSONB,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_admin_audit PRIMARY KEY (audit_id),
        CONSTRAINT fk_admin_audit_admin FOREIGN KEY (admin_id)
            REFERENCES account (account_id) ON DELETE SET NULL
    );
    """,
    """
    CREATE TABLE credit_topup (
        topup_id UUID NOT NULL DEFAULT gen_random_uuid(),
        account_id UUID NOT NULL,
        amount NUMERIC(12,2) NOT NULL,
        credit_amount NUMERIC(12,2) NOT NULL,
        package_key TEXT,
        payment_method TEXT NOT NULL,
        transfer_note TEXT NOT NULL,
        payment_tx_id TEXT,
        note TEXT,
        status topup_status_enum NOT NULL DEFAULT 'pending',
        admin_id UUID,
        admin_note TEXT,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        reviewed_at_utc TIMESTAMPTZ,
        CONSTRAINT pk_credit_topup PRIMARY KEY (topup_id),
        CONSTRAINT uq_credit_topup_transfer_note UNIQUE (transfer_note),
        CONSTRAINT uq_credit_topup_payment_tx_id UNIQUE (payment_tx_id),
        CONSTRAINT fk_credit_topup_account FOREIGN KEY (account_id)
            REFERENCES account (account_id) ON DELETE CASCADE,
        CONSTRAINT fk_credit_topup_admin FOREIGN KEY (admin_id)
            REFERENCES account (account_id) ON DELETE SET NULL,
        CONSTRAINT ck_credit_topup_amount_positive CHECK (amount > 0),
        CONSTRAINT ck_credit_topup_credit_amount_positive CHECK (credit_amount > 0)
    );
    """,
    """
    CREATE TABLE otp_code (
        otp_id UUID NOT NULL DEFAULT gen_random_uuid(),
        account_id UUID NOT NULL,
        request_id UUID NOT NULL,
        code_hash TEXT NOT NULL,
        channel TEXT NOT NULL DEFAULT 'email',
        purpose otp_purpose_enum NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        max_attempts INTEGER NOT NULL DEFAULT 5,
        expires_at_utc TIMESTAMPTZ NOT NULL,
        used_at_utc TIMESTAMPTZ,
        sent_at_utc TIMESTAMPTZ NOT NULL,
        created_at_utc TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT pk_otp_code PRIMARY KEY (otp_id),
        CONSTRAINT uq_otp_code_request_id UNIQUE (request_id),
        CONSTRAINT fk_otp_code_account FOREIGN KEY (account_id)
            REFERENCES account (account_id) ON DELETE CASCADE,
        CONSTRAINT ck_otp_code_attempts_nonneg CHECK (attempts >= 0),
        CONSTRAINT ck_otp_code_max_attempts_positive CHECK (max_attempts > 0),
        CONSTRAINT ck_otp_code_expiry_after_creation CHECK (expires_at_utc > created_at_utc)
    );
    """,
)

INDEX_DDL: tuple[str, ...] = (
    "CREATE INDEX idx_trusted_device_account ON trusted_device USING btree (account_id);",
    "CREATE INDEX idx_refresh_token_account ON refresh_token USING btree (account_id);",
    "CREATE INDEX idx_refresh_token_device_revoked_desc ON refresh_token USING btree (device_id, revoked_at_utc DESC);",
    "CREATE INDEX idx_customer_order_account_created_desc ON customer_order USING btree (account_id, created_at_utc DESC);",
    "CREATE INDEX idx_balance_transaction_account_seq ON balance_transaction USING btree (account_id, entry_seq);",
    "CREATE INDEX idx_balance_transaction_created_desc ON balance_transaction USING btree (created_at_utc DESC);",
    "CREATE INDEX idx_balance_transaction_order ON balance_transaction USING btree (order_id);",
    "CREATE INDEX idx_login_audit_account_created_desc ON login_audit USING btree (account_id, created_at_utc DESC);",
    "CREATE INDEX idx_admin_audit_created_desc ON admin_audit USING btree (created_at_utc DESC);",
    "CREATE INDEX idx_credit_topup_account_created_desc ON credit_topup USING btree (account_id, created_at_utc DESC);",
    "CREATE INDEX idx_credit_topup_status_created_desc ON credit_topup USING btree (status, created_at_utc DESC);",
    "CREATE INDEX idx_otp_code_account ON otp_code USING btree (account_id);",
)

APPEND_ONLY_DDL: tuple[str, ...] = (
    """
    CREATE OR REPLACE FUNCTION fn_enforce_append_only()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    BEGIN
        RAISE EXCEPTION 'append-only violation on table %, operation % is not allowed', TG_TABLE_NAME, TG_OP;
    END;
    $$;
    """,
    """
    CREATE TRIGGER trg_balance_transaction_append_only
    BEFORE UPDATE OR DELETE ON balance_transaction
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
    """
    CREATE TRIGGER trg_login_audit_append_only
    BEFORE UPDATE OR DELETE ON login_audit
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
    """
    CREATE TRIGGER trg_admin_audit_append_only
    BEFORE UPDATE OR DELETE ON admin_audit
    FOR EACH ROW EXECUTE FUNCTION fn_enforce_append_only();
    """,
)


def _execute_all(statements: Sequence[str]) -> None:
    """Execute an ordered sequence of SQL statements."""

    for statement in statements:
        try:
            op.execute(statement)
        except Exception:
            logger.exception("Migration statement failed.")
            raise


def upgrade() -> None:
    """Apply the initial schema migration."""

    logger.info("Starting initial schema migration upgrade.")
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    _execute_all(ENUM_DDL)
    _execute_all(TABLE_DDL)
    _execute_all(INDEX_DDL)
    _execute_all(APPEND_ONLY_DDL)
    logger.info("Completed initial schema migration upgrade.")


def downgrade() -> None:
    """Revert the initial schema migration."""

    logger.info("Starting initial schema migration downgrade.")
    _execute_all(
        (
            "DROP TRIGGER IF EXISTS trg_admin_audit_append_only ON admin_audit;",
            "DROP TRIGGER IF EXISTS trg_login_audit_append_only ON login_audit;",
            "DROP TRIGGER IF EXISTS trg_balance_transaction_append_only ON balance_transaction;",
            "DROP FUNCTION IF EXISTS fn_enforce_append_only();",
            "DROP TABLE IF EXISTS otp_code;",
            "DROP TABLE IF EXISTS credit_topup;",
            "DROP TABLE IF EXISTS admin_audit;",
            "DROP TABLE IF EXISTS login_audit;",
            "DROP TABLE IF EXISTS balance_transaction;",
            "DROP TABLE IF EXISTS customer_order;",
            "DROP TABLE IF EXISTS refresh_token;",
            "DROP TABLE IF EXISTS trusted_device;",
            "DROP TABLE IF EXISTS account;",
            "DROP TYPE IF EXISTS otp_purpose_enum;",
            "DROP TYPE IF EXISTS topup_status_enum;",
            "DROP TYPE IF EXISTS order_status_enum;",
            "DROP TYPE IF EXISTS audit_result_enum;",
            "DROP TYPE IF EXISTS ledger_direction_enum;",
            "DROP TYPE IF EXISTS account_status_enum;",
            "DROP TYPE IF EXISTS account_role_enum;",
        )
    )
    logger.info("Completed initial schema migration downgrade.")
