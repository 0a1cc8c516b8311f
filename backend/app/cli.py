# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "app:create_app" (PowerShell: $env:FLASK_APP="app:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create demo users of every role, a small account tree and a published course.
#
# User inspection/bootstrap:
# - python -m flask users list [--role accountant]
#   List user profiles with role, XP and streak.
# - python -m flask users create --uid abc123 --name "Ada" --email ada@example.com --role admin
#   Create a profile for an identity the auth provider already knows.
# - python -m flask users set-role abc123 accountant
#   Change a user's role.
# - python -m flask users show abc123
#   Print one user's profile, enrollments, quiz attempts and badges.
#
# Ledger inspection/repair:
# - python -m flask ledger accounts
#   Print the account tree with balances.
# - python -m flask ledger liquidity
#   Print company liquidity (sum of root standard accounts).
# - python -m flask ledger verify [--account-id 3]
#   Replay transaction history and compare with stored balances.
# - python -m flask ledger close-settled
#   Close receivables whose balance is zero but are still open.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Account
from .permissions import VALID_ROLES, ROLE_ADMIN, ROLE_ACCOUNTANT, ROLE_CREATOR, ROLE_STUDENT
from .services import content_service, ledger_service, user_service
from .validation import ValidationError


def _fmt_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


DEMO_USERS = [
    ("demo-admin", "Demo Admin", "admin@learnledger.local", ROLE_ADMIN),
    ("demo-accountant", "Demo Accountant", "accountant@learnledger.local", ROLE_ACCOUNTANT),
    ("demo-creator", "Demo Creator", "creator@learnledger.local", ROLE_CREATOR),
    ("demo-student", "Demo Student", "student@learnledger.local", ROLE_STUDENT),
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Populate an empty database with demo data. Skips steps already done."""
    click.echo("START Seeding demo data...")

    click.echo("\nUSERS Creating demo users...")
    actor = None
    for uid, name, email, role in DEMO_USERS:
        user, created = user_service.bootstrap_user_profile(uid, display_name=name, email=email)
        if created:
            user = user_service.set_user_role(uid, role)
            click.echo(f"PASS Created user: {uid} ({email}) with role '{role}'")
        else:
            click.echo(f"WARN  User '{uid}' already exists, skipping...")
        if role == ROLE_ACCOUNTANT:
            actor = user

    click.echo("\nLEDGER Creating accounts...")
    if db.session.query(Account).count():
        click.echo("WARN  Accounts already exist, skipping...")
    else:
        bank = ledger_service.create_account("Main Bank", 500_000, actor=actor)
        ledger_service.create_account("Petty Cash", 20_000, parent_id=bank.id, actor=actor)
        savings = ledger_service.create_account("Savings", 1_000_000, actor=actor)
        ledger_service.transfer(savings.id, bank.id, 50_000, note="Operating float", actor=actor)
        ledger_service.create_receivable("Acme Corp", 120_000, bank.id, actor=actor)
        click.echo(f"PASS Accounts created. Liquidity: {_fmt_cents(ledger_service.get_company_liquidity())}")

    click.echo("\nCONTENT Creating demo course...")
    if content_service.list_courses():
        click.echo("WARN  Courses already exist, skipping...")
    else:
        course = content_service.create_course(
            "Bookkeeping Basics",
            "Double-entry fundamentals for new accountants.",
            created_by="demo-creator",
        )
        topic = content_service.add_topic(course.id, "Debits and credits")
        cards = content_service.add_flashcards(topic.id, [
            {"front": "Debit", "back": "Left side of an account"},
            {"front": "Credit", "back": "Right side of an account"},
        ])
        questions = content_service.add_questions(topic.id, [
            {"text": "Assets = Liabilities + ?", "type": "Short Answer", "answer": "Equity"},
            {"text": "Every debit has a matching credit.", "type": "True/False", "answer": "True"},
        ])
        for card in cards:
            content_service.approve_content(content_service.CONTENT_FLASHCARD, card.id)
        for question in questions:
            content_service.approve_content(content_service.CONTENT_QUESTION, question.id)
        content_service.set_course_status(course.id, content_service.COURSE_STATUS_PUBLISHED)
        click.echo(f"PASS Published course: {course.name} (ID: {course.id})")

    click.echo("\nDONE Demo data ready.")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--uid', prompt=True, help='Identity asserted by the auth provider')
@click.option('--name', 'display_name', default=None, help='Display name')
@click.option('--email', default=None, help='Email address')
@click.option('--role', type=click.Choice(VALID_ROLES), default=ROLE_STUDENT, help='Role')
@with_appcontext
def create_user_cli(uid, display_name, email, role):
    """Create a user profile ahead of first sign-in."""
    try:
        user, created = user_service.bootstrap_user_profile(uid, display_name=display_name, email=email)
    except (user_service.AuthError, ValidationError) as e:
        click.echo(f"FAIL {e}")
        return

    if not created:
        click.echo(f"FAIL User '{uid}' already exists")
        return

    if role != user.role:
        user = user_service.set_user_role(uid, role)
    click.echo(f"PASS Created user: {user.id} ({user.display_name}) with role '{user.role}'")


@users_group.command('list')
@click.option('--role', type=click.Choice(VALID_ROLES), default=None, help='Filter by role')
@with_appcontext
def list_users(role):
    """List all user profiles."""
    users = user_service.list_users(role=role)

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<24} {'Name':<24} {'Role':<12} {'XP':<8} {'Streak'}")
    click.echo("="*90)

    for user in users:
        click.echo(f"{user.id:<24} {user.display_name:<24} {user.role:<12} {user.xp:<8} {user.streak}")

    click.echo("="*90 + "\n")


@users_group.command('show')
@click.argument('uid')
@with_appcontext
def show_user_cli(uid):
    """Show one user's profile, enrollments, quiz attempts and badges."""
    try:
        overview = user_service.get_user_overview(uid)
    except user_service.UserNotFoundError as e:
        raise click.ClickException(str(e))

    user = overview["user"]
    click.echo(f"\n{user['display_name']} ({user['id']}), role '{user['role']}'")
    click.echo(f"XP {user['xp']}, streak {user['streak']}")

    click.echo("\nEnrollments:")
    for enrollment in overview["enrollments"]:
        click.echo(f"  {enrollment['course_id']:<6} {enrollment['course']['name']}")
    if not overview["enrollments"]:
        click.echo("  (none)")

    click.echo("\nQuiz attempts:")
    for attempt in overview["quiz_attempts"]:
        click.echo(f"  {attempt['attempted_at']}  {attempt['topic_name']:<30} {attempt['score']}%")
    if not overview["quiz_attempts"]:
        click.echo("  (none)")

    click.echo(f"\nBadges: {', '.join(b['badge_id'] for b in overview['badges']) or '(none)'}\n")


@users_group.command('set-role')
@click.argument('uid')
@click.argument('role', type=click.Choice(VALID_ROLES))
@with_appcontext
def set_role_cli(uid, role):
    """Change a user's role."""
    try:
        user = user_service.set_user_role(uid, role)
    except user_service.UserNotFoundError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS {user.id} is now '{user.role}'")


# =============================================================================
# LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Ledger inspection and repair commands."""


def _echo_account_node(node, depth=0, status=None):
    label = "  " * depth + node["name"]
    click.echo(
        f"{node['id']:<6} {label[:34]:<34} {node['type']:<12} {status or node['status']:<8} "
        f"{_fmt_cents(node['balance_cents']):>14}"
    )
    for child in node["children"]:
        _echo_account_node(child, depth + 1)


@ledger_group.command('accounts')
@with_appcontext
def list_accounts_cli():
    """Print the account tree with balances."""
    tree = ledger_service.get_account_tree()

    if not tree["roots"] and not tree["orphans"]:
        click.echo("No accounts found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Name':<34} {'Type':<12} {'Status':<8} {'Balance':>14}")
    click.echo("="*80)

    for root in tree["roots"]:
        _echo_account_node(root)

    for orphan in tree["orphans"]:
        _echo_account_node(orphan, status="ORPHAN")

    click.echo("="*80)
    click.echo(f"Liquidity: {_fmt_cents(tree['liquidity_cents'])}\n")


@ledger_group.command('liquidity')
@with_appcontext
def liquidity_cli():
    """Print company liquidity."""
    click.echo(_fmt_cents(ledger_service.get_company_liquidity()))


@ledger_group.command('verify')
@click.option('--account-id', type=int, default=None, help='Verify a single account')
@with_appcontext
def verify_cli(account_id):
    """Replay transaction history against stored balances."""
    if account_id is not None:
        try:
            account_ids = [ledger_service.get_account(account_id).id]
        except ledger_service.AccountNotFoundError as e:
            raise click.ClickException(str(e))
    else:
        account_ids = [a.id for a in ledger_service.list_accounts()]

    failures = 0
    for aid in account_ids:
        check = ledger_service.verify_account_history(aid)
        if check.ok:
            click.echo(f"PASS Account {aid}: {_fmt_cents(check.recorded_balance_cents)}")
            continue
        failures += 1
        click.echo(
            f"FAIL Account {aid}: stored {_fmt_cents(check.recorded_balance_cents)}, "
            f"replayed {_fmt_cents(check.replayed_balance_cents)}, "
            f"{len(check.mismatches)} snapshot mismatch(es)"
        )

    if failures:
        raise click.ClickException(f"{failures} account(s) failed verification")


@ledger_group.command('close-settled')
@with_appcontext
def close_settled_cli():
    """Close receivables already paid down to zero."""
    closed = ledger_service.close_settled_receivables()
    if not closed:
        click.echo("PASS No settled receivables left open.")
        return
    click.echo(f"PASS Closed {len(closed)} receivable(s): {', '.join(str(i) for i in closed)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
