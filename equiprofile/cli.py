import click
from flask.cli import with_appcontext

from equiprofile.extensions import db
from equiprofile.models.user import User, ROLE_ADMIN, ROLE_CHOICES, STATUS_TRIAL
from equiprofile.services import accounts
from equiprofile.services import email as email_service
from equiprofile.utils import helpers

# Reminders go out when this many days of trial remain
REMINDER_DAYS = (2, 1, 0)


@click.group()
def users():
    """User management."""


@users.command("create")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--name", default=None)
@click.option("--role", type=click.Choice(ROLE_CHOICES), default="user")
@with_appcontext
def users_create(email, password, name, role):
    if accounts.get_by_email(email):
        raise click.ClickException("User already exists")
    user = accounts.create_account(email=email, password=password, name=name, role=role)
    click.echo(f"User created id={user.id} email={user.email} role={user.role}")


@users.command("promote")
@click.option("--email", required=True)
@with_appcontext
def users_promote(email):
    user = accounts.get_by_email(email)
    if not user:
        raise click.ClickException("User not found")
    accounts.set_role(user.id, ROLE_ADMIN)
    click.echo(f"Promoted {email} to {ROLE_ADMIN}")


@click.group()
def notifications():
    """Notification outbox."""


@notifications.command("dispatch")
@click.option("--limit", type=int, default=100, show_default=True)
@with_appcontext
def notifications_dispatch(limit):
    sent, failed = email_service.dispatch_pending(limit=limit)
    click.echo(f"Dispatched: sent={sent} failed={failed}")


@click.group()
def trials():
    """Trial lifecycle."""


@trials.command("remind")
@with_appcontext
def trials_remind():
    """Queue a reminder for every trial ending today, tomorrow or in two days."""
    today = helpers.utcnow().date()
    rows = db.session.execute(
        db.select(User).where(
            User.subscription_status == STATUS_TRIAL,
            User.trial_ends_at.is_not(None),
            User.is_active.is_(True),
        )
    ).scalars().all()

    queued = 0
    for user in rows:
        days_left = (user.trial_ends_at.date() - today).days
        if days_left in REMINDER_DAYS and email_service.queue_trial_reminder(user, days_left):
            queued += 1
    click.echo(f"Trial reminders queued: {queued}")


def register_cli(app):
    app.cli.add_command(users)
    app.cli.add_command(notifications)
    app.cli.add_command(trials)
