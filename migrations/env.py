import logging
from logging.config import fileConfig
import os
import sys

from alembic import context
from sqlalchemy import engine_from_config, pool
from flask import current_app, has_app_context

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from practice import create_app
from practice.extensions import db
from practice.models import user_models, system_models  # noqa: F401

config = context.config
fileConfig(config.config_file_name)
logger = logging.getLogger('alembic.env')

# `flask db` already runs inside an app context; plain `alembic` does not
app = current_app._get_current_object() if has_app_context() else create_app(os.environ.get('FLASK_CONFIG'))
database_url = app.config['SQLALCHEMY_DATABASE_URI']
config.set_main_option('sqlalchemy.url', database_url.replace('%', '%%'))

target_metadata = db.metadata


def _migrate_options():
    migrate_ext = app.extensions.get('migrate')
    options = dict(migrate_ext.configure_args) if migrate_ext else {}
    options.setdefault('compare_type', True)
    # SQLite cannot ALTER most constraints in place
    options.setdefault('render_as_batch', database_url.startswith('sqlite'))
    return options


def run_migrations_offline():
    """Emit SQL for the audit schema without connecting to the database."""
    context.configure(
        url=config.get_main_option('sqlalchemy.url'),
        target_metadata=target_metadata,
        literal_binds=True,
        **_migrate_options()
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    def skip_empty_autogenerate(context, revision, directives):
        if getattr(config.cmd_opts, 'autogenerate', False):
            script = directives[0]
            if script.upgrade_ops.is_empty():
                directives[:] = []
                logger.info('No changes to the audit schema detected.')

    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix='sqlalchemy.',
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            process_revision_directives=skip_empty_autogenerate,
            **_migrate_options()
        )

        with context.begin_transaction():
            context.run_migrations()


with app.app_context():
    if context.is_offline_mode():
        run_migrations_offline()
    else:
        run_migrations_online()
