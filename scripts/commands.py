# commands.py

import click
from flask import current_app
from flask.cli import with_appcontext
from extensions import db
from services.enums import ActivationStatus, UserRole
from services.member_activation_service import check_password_strength


@click.command('create-admin')
@click.option('--username', prompt=True, help='Admin username')
@click.option('--full-name', prompt=True, help='Full name')
@click.option('--email', prompt=True, help='Admin email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
@with_appcontext
def create_admin(username, full_name, email, password):
    """Create an admin user"""
    user_repository = current_app.services.get('user_repository')
    if user_repository.exists(role=UserRole.ADMIN.value):
        click.echo('An admin user already exists.')
        return

    problems = check_password_strength(password)
    if problems:
        click.echo(f"Password needs {', '.join(problems)}")
        return

    password_service = current_app.services.get('password')
    user = user_repository.create(
        username=username.strip(),
        full_name=full_name.strip(),
        email=email.strip().lower(),
        role=UserRole.ADMIN.value,
        password_hash=password_service.hash(password),
        activation_status=ActivationStatus.ACTIVATED.value,
    )
    db.session.commit()
    click.echo(f'Admin user created successfully: {user.username}')


@click.command('expire-credentials')
@with_appcontext
def expire_credentials():
    """Move members with lapsed temporary passwords to token_expired"""
    result = current_app.services.get('member_activation').expire_stale_credentials()
    click.echo(f"Expired {result.data['expired']} temporary password(s)")


@click.command('retry-notifications')
@click.option('--channel', type=click.Choice(['sms', 'email']), default='sms', show_default=True)
@click.option('--limit', default=100, show_default=True, help='Maximum members to retry')
@with_appcontext
def retry_notifications(channel, limit):
    """Run the automatic retry sweep for one channel"""
    retry_service = current_app.services.get('notification_retry')
    member_ids = retry_service.find_members_due_for_retry(channel, limit=limit)
    if not member_ids:
        click.echo(f'No failed {channel} notifications to retry')
        return

    summary = retry_service.retry_failed_notifications(member_ids, channel, actor_id=None).data
    click.echo(f"{summary['successful']} successful, {summary['failed']} failed, "
               f"{summary['skipped']} skipped of {summary['total']}")


def init_app(app):
    """Register commands with the Flask app"""
    app.cli.add_command(create_admin)
    app.cli.add_command(expire_credentials)
    app.cli.add_command(retry_notifications)
