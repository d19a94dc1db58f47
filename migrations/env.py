import importlib
import logging
import pkgutil
from logging.config import fileConfig

from alembic import context
from flask import current_app

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)
logger = logging.getLogger("alembic.env")

migrate_ext = current_app.extensions["migrate"]
engine = migrate_ext.db.engine
config.set_main_option(
    "sqlalchemy.url", engine.url.render_as_string(hide_password=False).replace("%", "%%")
)


def target_metadata():
    # Importing every model module registers its table on the shared metadata
    import equiprofile.models as models

    for info in pkgutil.iter_modules(models.__path__):
        importlib.import_module(f"{models.__name__}.{info.name}")
    return migrate_ext.db.metadata


def _skip_empty_autogenerate(context_, revision, directives):
    if getattr(config.cmd_opts, "autogenerate", False) and directives[0].upgrade_ops.is_empty():
        directives[:] = []
        logger.info("No schema changes detected; no revision written.")


def _options():
    opts = dict(migrate_ext.configure_args)
    opts.setdefault("process_revision_directives", _skip_empty_autogenerate)
    opts.update(
        target_metadata=target_metadata(),
        compare_type=True,
        # ALTER on SQLite goes through table copies
        render_as_batch=engine.dialect.name == "sqlite",
    )
    return opts


if context.is_offline_mode():
    opts = _options()
    opts.pop("process_revision_directives", None)
    context.configure(url=config.get_main_option("sqlalchemy.url"), literal_binds=True, **opts)
    with context.begin_transaction():
        context.run_migrations()
else:
    with engine.connect() as connection:
        context.configure(connection=connection, **_options())
        with context.begin_transaction():
            context.run_migrations()
