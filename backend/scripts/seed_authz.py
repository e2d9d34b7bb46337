#!/usr/bin/env python
"""Idempotent seed script for the capability catalog, role presets and first admin.

Usage:
    python backend/scripts/seed_authz.py               # seed normally
    python backend/scripts/seed_authz.py --show-roles  # print role -> grant counts (after ensuring seed)
    python backend/scripts/seed_authz.py --dry-run     # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --export-json matrix.json
    python backend/scripts/seed_authz.py --validate --fail-if-changed <sha256>

Exit codes: 0 ok, 2 validation problems, 4 checksum mismatch.
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from sqlalchemy import select, text

from docflow import create_app, get_db, get_services
from docflow.constants.permissions import ROLES, SUPERUSER_ROLE
from docflow.models.authz import Base, Permission, Role
from docflow.services.bootstrap import bootstrap, role_grant_map


def find_problems(session, catalog):
    """Persisted permissions/roles that the catalog or role enumeration does not declare."""
    problems = []
    declared = {(c.module, c.action) for c in catalog.list_capabilities()}
    for perm in session.execute(select(Permission)).scalars():
        if (perm.module, perm.action) not in declared:
            problems.append(f"Unknown capability persisted: {perm.code}")
        elif perm.code != f'{perm.module}.{perm.action}':
            problems.append(f"Code/module mismatch: {perm.code} vs {perm.module}.{perm.action}")
    for role in session.execute(select(Role)).scalars():
        if role.name not in ROLES:
            problems.append(f"Unknown role persisted: {role.name}")
        if role.name == SUPERUSER_ROLE and role.permissions:
            problems.append(f"Superuser role carries {len(role.permissions)} stored grants (ignored by evaluator)")
    return problems


def print_role_summary(mapping):
    if not mapping:
        print("[INFO] No roles present.")
        return
    name_w = max(len(r) for r in mapping)
    print(f"{'Role'.ljust(name_w)} | Count | Sample (up to 6)")
    print('-' * (name_w + 40))
    for name in sorted(mapping):
        codes = mapping[name]
        print(f"{name.ljust(name_w)} | {str(len(codes)).rjust(5)} | {', '.join(codes[:6])}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Seed docflow capabilities & role presets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role grant counts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--no-admin', action='store_true', help='Do not create the initial admin user')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export the role-permission snapshot (to FILE or stdout if omitted)')
    p.add_argument('--validate', action='store_true', help='Validate persisted capabilities & roles; exits 2 on problems')
    p.add_argument('--fail-if-changed', metavar='CHECKSUM', help='Exit 4 if the snapshot checksum differs from the provided value')
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM permissions LIMIT 1'))
        except Exception:
            # Auto-create schema for bootstrap; in real env prefer alembic upgrade
            session.rollback()
            import docflow.models.audit  # noqa: F401
            import docflow.models.document  # noqa: F401
            Base.metadata.create_all(session.get_bind())
        finally:
            session.commit()

        services = get_services()
        try:
            summary = bootstrap(session, services.catalog, with_admin=not args.no_admin)
            if args.validate:
                problems = find_problems(session, services.catalog)
                if problems:
                    print('\n[VALIDATION] FAIL:')
                    for p in problems:
                        print(' -', p)
                    session.rollback()
                    sys.exit(2)
                print('[VALIDATION] OK: All capabilities & role references valid.')
            snapshot = services.matrix.export()
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Permissions would create: {summary['permissions_created']}, "
                      f"grants would add: {summary['grants_added']}")
            else:
                session.commit()
                print(f"[DONE] Permissions created: {summary['permissions_created']}, grants added: {summary['grants_added']}")
            if args.show_roles:
                print('\nRole Permission Summary:')
                print_role_summary(role_grant_map(session))
            if args.fail_if_changed:
                if snapshot['checksum'] != args.fail_if_changed:
                    print(f"[CHECKSUM] MISMATCH: expected {args.fail_if_changed} got {snapshot['checksum']}")
                    sys.exit(4)
                print(f"[CHECKSUM] OK: {snapshot['checksum']}")
            if args.export_json is not None:
                snapshot['meta'] = {'dry_run': args.dry_run, 'roles': len(snapshot['grants'])}
                if args.export_json == '-':
                    print(json.dumps(snapshot, indent=2, sort_keys=True))
                else:
                    with open(args.export_json, 'w', encoding='utf-8') as f:
                        json.dump(snapshot, f, indent=2, sort_keys=True)
                    print(f"[INFO] Exported JSON to {args.export_json}")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


if __name__ == '__main__':
    main()
