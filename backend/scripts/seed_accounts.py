#!/usr/bin/env python
"""Idempotent seed script for demo accounts.

Usage:
    python backend/scripts/seed_accounts.py             # create missing demo accounts
    python backend/scripts/seed_accounts.py --dry-run   # run logic then rollback (no DB changes)
    python backend/scripts/seed_accounts.py --show      # print accounts with their role permissions

Passwords come from SEED_PASSWORD (default ChangeMe123!); change them after first login.
"""
from __future__ import annotations
import argparse
import os
import textwrap
from sqlalchemy import inspect, select

from prflow import create_app, get_db
from prflow.constants.permissions import permissions_for_role
from prflow.models.account import Account, Base
import prflow.models.audit  # noqa: F401
import prflow.models.purchase_request  # noqa: F401

DEMO_ACCOUNTS = [
    # (name, email, department, role)
    ('IT Admin', os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com'), 'IT', Account.ROLE_ADMIN),
    ('Department Head', 'approver@example.com', 'Management', Account.ROLE_APPROVER),
    ('Staff Member', 'user@example.com', 'Accounting', Account.ROLE_USER),
]


def ensure_schema(session):
    engine = session.get_bind()
    if not inspect(engine).has_table('accounts'):
        # bootstrap only; real deployments run `alembic upgrade head`
        Base.metadata.create_all(engine)


def ensure_accounts(session, password: str):
    existing = set(session.execute(select(Account.email)).scalars().all())
    created = 0
    for name, email, department, role in DEMO_ACCOUNTS:
        if email in existing:
            continue
        account = Account(name=name, email=email, department=department, role=role, is_active=True)
        account.set_password(password)
        session.add(account)
        created += 1
        print(f"[INFO] Created {role} account {email}")
    return created


def print_accounts(session):
    rows = session.execute(select(Account).order_by(Account.id)).scalars().all()
    if not rows:
        print("[INFO] No accounts present.")
        return
    email_w = max(len(a.email) for a in rows)
    print(f"{'Email'.ljust(email_w)} | Role     | Active | Permissions")
    print('-' * (email_w + 50))
    for a in rows:
        perms = ', '.join(permissions_for_role(a.role))
        print(f"{a.email.ljust(email_w)} | {a.role.ljust(8)} | {'yes' if a.is_active else 'no '}    | {perms}")


def parse_args():
    p = argparse.ArgumentParser(
        description="Seed demo admin / approver / user accounts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_accounts.py\n  dry run: seed_accounts.py --dry-run\n  show accounts: seed_accounts.py --show\n""")
    )
    p.add_argument('--show', action='store_true', help='Print accounts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        ensure_schema(session)
        created = ensure_accounts(session, os.getenv('SEED_PASSWORD', 'ChangeMe123!'))
        if args.show:
            session.flush()
            print_accounts(session)
        if args.dry_run:
            session.rollback()
            print(f"[DRY-RUN] (rolled back) Accounts would create: {created}")
        else:
            session.commit()
            print(f"[DONE] Accounts created: {created}")


if __name__ == '__main__':
    main()
