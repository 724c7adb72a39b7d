import click
from flask.cli import with_appcontext
from flask_jwt_extended import create_access_token

from patientshare.extensions import db
from patientshare.errors import AccessControlError
from patientshare.models.organization_models import UserProfile
from patientshare.services import membership_service


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create all tables, including the open-grant partial unique index."""
    db.create_all()
    click.echo("Database initialized successfully!")


@click.command('create-user')
@click.argument('email')
@click.argument('first_name')
@click.argument('last_name')
@with_appcontext
def create_user_command(email, first_name, last_name):
    """Provision a user profile for an externally authenticated identity."""
    try:
        user = membership_service.create_user(email, first_name, last_name)
    except AccessControlError as e:
        raise click.ClickException(e.message)
    click.echo(f"Created user {user.id} ({user.email})")


@click.command('issue-token')
@click.argument('user_id', type=int)
@with_appcontext
def issue_token_command(user_id):
    """Print an access token for a user, for local development."""
    user = db.session.get(UserProfile, user_id)
    if not user or not user.is_active:
        raise click.ClickException(f"No active user with id {user_id}")
    click.echo(create_access_token(identity=str(user.id)))


def register_commands(app):
    app.cli.add_command(init_db_command)
    app.cli.add_command(create_user_command)
    app.cli.add_command(issue_token_command)
