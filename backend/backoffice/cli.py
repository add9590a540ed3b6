# Overview: Flask CLI command groups for bootstrap, activity history, and admin DB tooling.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to backoffice (PowerShell: $env:FLASK_APP="backoffice").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--branch "Main Branch"] [--owner-email owner@backoffice.local]
#   Idempotent bootstrap: creates tables, a default branch, and an owner user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Activity history:
# - python -m flask history show 42
#   Print one activity (and its restore child, if any) as JSON.
# - python -m flask history preview 42 --user-id 1
#   Dry-run a restore: print the projected effect, change nothing.
# - python -m flask history restore 42 --user-id 1 --reason "Duplicate entry"
#   Reverse the activity.
#
# Admin DB tooling (requires ADMIN_TOOLS_ENABLED and an owner --user-id):
# - python -m flask admin dependents branches id 3
#   List rows referencing branches.id = 3.
# - python -m flask admin cascade-delete branches id 3 --dependent inventory.branch_id --user-id 1 --yes
#   Delete the listed dependents and the row, atomically.
# - python -m flask admin bulk-delete categories --soft --confirm categories --user-id 1
#   Soft (is_active=false) or hard delete every row of a table.
# - python -m flask admin audit [--table products] [--operation delete] [--limit 20]
#   Newest-first admin audit trail.

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .context import ROLE_OWNER, Identity, RequestContext
from .errors import BackOfficeError
from .extensions import db
from .models import Branch, User
from .services import admin_audit_service, dependency_service, deletion_service, restore_service
from .services.activity_service import describe_activity, get_activity


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _fail(error: BackOfficeError) -> None:
    db.session.rollback()
    click.echo(f"FAIL [{error.code}] {error.message}")
    details = {k: v for k, v in error.details.items() if v is not None}
    if details:
        _echo_json(details)


def _operator_context(user_id: int) -> RequestContext | None:
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        click.echo(f"FAIL Active user {user_id} not found")
        return None
    return RequestContext(identity=Identity.from_user(user), ip_address="cli")


def _admin_tools_enabled() -> bool:
    if not current_app.config.get("ADMIN_TOOLS_ENABLED"):
        click.echo("FAIL Admin tools are disabled (set ADMIN_TOOLS_ENABLED=true)")
        return False
    return True


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--branch', 'branch_name', default='Main Branch', help='Default branch name')
@click.option('--owner-email', default='owner@backoffice.local', help='Owner user email')
@click.option('--owner-name', default='Owner', help='Owner full name')
@with_appcontext
def init_system(branch_name, owner_email, owner_name):
    """
    Initialize the back office: schema, a default branch and an owner user.

    Safe to re-run; existing rows are reused.
    """
    click.echo("START Initializing back office...")
    db.create_all()

    branch = db.session.query(Branch).filter_by(name=branch_name).first()
    if not branch:
        branch = Branch(name=branch_name, is_active=True)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    owner = db.session.query(User).filter_by(email=owner_email).first()
    if not owner:
        owner = User(email=owner_email, full_name=owner_name, role=ROLE_OWNER, branch_id=None, is_active=True)
        db.session.add(owner)
        db.session.commit()
        click.echo(f"PASS Created owner: {owner.email} (ID: {owner.id})")
    else:
        click.echo(f"PASS Using existing owner: {owner.email} (ID: {owner.id})")

    click.echo("DONE Back office initialized.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('history')
def history_group():
    """Inspect and restore recorded activities."""


@history_group.command('show')
@click.argument('activity_id', type=int)
@with_appcontext
def show_activity(activity_id):
    """Print one activity as JSON."""
    try:
        activity = get_activity(activity_id)
    except BackOfficeError as e:
        _fail(e)
        return
    _echo_json(describe_activity(activity))


@history_group.command('preview')
@click.argument('activity_id', type=int)
@click.option('--user-id', type=int, required=True, help='Acting user ID')
@with_appcontext
def preview_restore_cli(activity_id, user_id):
    """Dry-run a restore and print the projected effect."""
    ctx = _operator_context(user_id)
    if ctx is None:
        return
    try:
        result = restore_service.restore_activity(ctx, activity_id, dry_run=True)
    except BackOfficeError as e:
        _fail(e)
        return
    click.echo(result["message"])
    _echo_json(result["data"])


@history_group.command('restore')
@click.argument('activity_id', type=int)
@click.option('--user-id', type=int, required=True, help='Acting user ID')
@click.option('--reason', default=restore_service.DEFAULT_RESTORE_REASON, show_default=True, help='Why the activity is reversed')
@with_appcontext
def restore_cli(activity_id, user_id, reason):
    """Reverse a completed activity."""
    ctx = _operator_context(user_id)
    if ctx is None:
        return
    try:
        result = restore_service.restore_activity(ctx, activity_id, reason=reason)
    except BackOfficeError as e:
        _fail(e)
        return
    click.echo(f"PASS Activity {activity_id} restored (restore activity {result['data']['restore_activity_id']})")
    _echo_json(result["data"]["effect"])


@click.group('admin')
def admin_group():
    """Administrative DB tooling (dependents, cascade/bulk delete, audit)."""


@admin_group.command('dependents')
@click.argument('table')
@click.argument('primary_key')
@click.argument('primary_key_value')
@with_appcontext
def dependents_cli(table, primary_key, primary_key_value):
    """List rows in other tables that reference TABLE.PRIMARY_KEY = VALUE."""
    if not _admin_tools_enabled():
        return
    try:
        dependents = dependency_service.list_dependents(table, primary_key, primary_key_value)
    except BackOfficeError as e:
        _fail(e)
        return
    if not dependents:
        click.echo("PASS No dependents")
        return
    for dep in dependents:
        marker = "" if dep.declared else " (by naming convention)"
        click.echo(f"{dep.table}.{dep.column}: {dep.count} row(s){marker}")


@admin_group.command('cascade-delete')
@click.argument('table')
@click.argument('primary_key')
@click.argument('primary_key_value')
@click.option('--dependent', 'dependents', multiple=True, help='Dependent as table.column (repeatable)')
@click.option('--user-id', type=int, required=True, help='Acting owner user ID')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def cascade_delete_cli(table, primary_key, primary_key_value, dependents, user_id, yes):
    """Delete the listed dependents, then the row itself, in one transaction."""
    if not _admin_tools_enabled():
        return
    parsed = []
    for raw in dependents:
        dep_table, _, dep_column = raw.partition(".")
        if not dep_table or not dep_column:
            click.echo(f"FAIL Dependent must be table.column, got '{raw}'")
            return
        parsed.append({"table": dep_table, "column": dep_column})

    ctx = _operator_context(user_id)
    if ctx is None:
        return
    if not yes:
        click.confirm(
            f"WARN Delete {table}.{primary_key}={primary_key_value} and {len(parsed)} dependent set(s)?",
            abort=True,
        )
    try:
        result = deletion_service.cascade_delete(ctx, table, primary_key, primary_key_value, parsed)
    except BackOfficeError as e:
        _fail(e)
        return
    for name, count in result["deleted"].items():
        click.echo(f"DELETE {name}: {count} row(s)")
    click.echo("PASS Cascade delete complete")


@admin_group.command('bulk-delete')
@click.argument('table')
@click.option('--soft', is_flag=True, help='Set is_active=false instead of deleting')
@click.option('--confirm', 'confirm_text', required=True, help='Must equal the table name')
@click.option('--user-id', type=int, required=True, help='Acting owner user ID')
@with_appcontext
def bulk_delete_cli(table, soft, confirm_text, user_id):
    """Soft- or hard-delete every row of TABLE."""
    if not _admin_tools_enabled():
        return
    ctx = _operator_context(user_id)
    if ctx is None:
        return
    try:
        result = deletion_service.bulk_delete(ctx, table, soft, confirm_text)
    except BackOfficeError as e:
        _fail(e)
        return
    verb = "Archived" if soft else "Deleted"
    click.echo(f"PASS {verb} {result['affected']} row(s) in {table}")


@admin_group.command('audit')
@click.option('--table', 'table_name', default=None, help='Filter by table')
@click.option('--operation', default=None, help='insert | update | delete | soft_delete')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def audit_cli(table_name, operation, limit):
    """Newest-first admin audit trail."""
    try:
        entries = admin_audit_service.list_admin_audit(table_name=table_name, operation=operation, limit=limit)
    except BackOfficeError as e:
        _fail(e)
        return
    if not entries:
        click.echo("No audit entries")
        return
    for entry in entries:
        key = f" {entry.primary_key}={entry.primary_key_value}" if entry.primary_key else ""
        who = entry.user_email or entry.user_id or "unknown"
        click.echo(f"#{entry.id} {entry.created_at} {entry.operation} {entry.table_name}{key} by {who}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(history_group)
    app.cli.add_command(admin_group)
