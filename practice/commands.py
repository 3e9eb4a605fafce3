import click
from flask.cli import with_appcontext
from practice.extensions import db
from practice.models.user_models import User, ROLES
from practice.utils.audit_logger import audit_logger


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create the user, audit and session tables."""
    db.create_all()
    click.echo("Database initialized successfully!")


@click.command('create-user')
@click.argument('username')
@click.option('--full-name', required=True)
@click.option('--email', required=True)
@click.option('--role', type=click.Choice(ROLES), default='therapist', show_default=True)
@click.password_option()
@with_appcontext
def create_user_command(username, full_name, email, role, password):
    """Create a practice user."""
    if User.query.filter_by(username=username).first():
        raise click.ClickException(f"User '{username}' already exists")

    user = User(username=username, full_name=full_name, email=email, role=role)
    try:
        user.set_password(password)
    except ValueError as e:
        raise click.ClickException(str(e))

    db.session.add(user)
    db.session.commit()
    click.echo(f"Created {role} '{username}' (id {user.id})")


@click.command('audit-replay')
@with_appcontext
def audit_replay_command():
    """Write spooled audit entries back to the database."""
    replayed, remaining = audit_logger.replay_spool()
    click.echo(f"Replayed {replayed} audit entries, {remaining} still spooled")
    if remaining:
        raise SystemExit(1)


def register_commands(app):
    app.cli.add_command(init_db_command)
    app.cli.add_command(create_user_command)
    app.cli.add_command(audit_replay_command)
