'''Various useful tools for working with revisioned domain objects.

Schema creation and upgrade cascade from a primary class to its history
class, and everything is organized within a `Repository` object.
'''
import logging

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import class_mapper, scoped_session
from sqlalchemy.schema import CreateColumn

from revisioned.base import lookup

logger = logging.getLogger('revisioned')


def schema_tables(cls):
    '''The primary table of `cls` followed by its history table (if any).'''
    tables = [class_mapper(cls).local_table]
    config = lookup(cls)
    if config is not None:
        tables.append(class_mapper(config.history_class).local_table)
    return tables

def auto_create_schema(cls, bind):
    '''(Re)create the table of `cls` and of its history. Destroys data.'''
    tables = schema_tables(cls)
    for table in reversed(tables):
        logger.info('Dropping table %s' % table.name)
        table.drop(bind, checkfirst=True)
    for table in tables:
        logger.info('Creating table %s' % table.name)
        table.create(bind)

def auto_alter_schema(cls, bind):
    '''Create missing tables and columns for `cls` and its history.'''
    for table in schema_tables(cls):
        upgrade_table(table, bind)

def upgrade_table(table, bind):
    with bind.begin() as conn:
        inspector = inspect(conn)
        if not inspector.has_table(table.name, schema=table.schema):
            logger.info('Creating table %s' % table.name)
            table.create(conn)
            return
        existing = set(col['name'] for col in
                inspector.get_columns(table.name, schema=table.schema))
        preparer = conn.dialect.identifier_preparer
        for col in table.c:
            if col.name in existing:
                continue
            if col.primary_key:
                logger.warning('Cannot add key column %s to existing table %s'
                        % (col.name, table.name))
                continue
            ddl = CreateColumn(col).compile(dialect=conn.dialect)
            logger.info('Adding column %s to %s' % (col.name, table.name))
            conn.execute(text('ALTER TABLE %s ADD COLUMN %s' %
                (preparer.format_table(table), ddl)))


class Repository(object):
    def __init__(self, metadata, session, dburi=None, revisioned_objects=()):
        '''
        @param session: a Session, sessionmaker or scoped_session. Use
            RevisionedSession as the session class.
        @param dburi: sqlalchemy dburi. If supplied will create engine and bind
            it to the session.
        @param revisioned_objects: revisioned classes whose history tables
            belong in `metadata`.
        '''
        self.metadata = metadata
        self.session = session
        self.dburi = dburi
        self.revisioned_objects = list(revisioned_objects)
        self.have_scoped_session = isinstance(self.session, scoped_session)
        self.engine = None
        if self.dburi:
            self.engine = create_engine(dburi)
            if hasattr(self.session, 'configure'):
                self.session.configure(bind=self.engine)
            else:
                self.session.bind = self.engine

    def materialize(self):
        '''Make sure history tables are part of the metadata.'''
        for cls in self.revisioned_objects:
            cls.Version

    def create_db(self):
        self.materialize()
        self.metadata.create_all(bind=self.engine)

    def rebuild_db(self):
        logger.info('Rebuilding DB')
        self.materialize()
        self.metadata.drop_all(bind=self.engine)
        self.metadata.create_all(bind=self.engine)

    def upgrade_db(self):
        self.materialize()
        for table in self.metadata.sorted_tables:
            upgrade_table(table, self.engine)

    def commit(self, remove=True):
        self.session.commit()
        if remove and self.have_scoped_session:
            self.session.remove()
