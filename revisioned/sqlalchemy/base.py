'''Revision SQLAlchemy mapped classes into history ('shadow') tables.

Usage::

    is_revisioned(Story, on='updated_at')

must be called once the class is mapped. It derives the history schema from
the mapped table, registers the class and hooks a Revisioner into the
mapper events of the class. Story.Version is the history class; it (and its
table) is built on first access.
'''
import logging

from sqlalchemy import Column, Table, and_, event, inspect, select
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.orm import attributes, class_mapper, object_mapper
from sqlalchemy.orm import object_session
from sqlalchemy.orm.exc import UnmappedClassError, UnmappedColumnError

from revisioned.base import ConfigurationError, LifecycleCoordinator, \
        PropertySpec, RevisioningConfig, register, revisioning_config
from .sqla import RevisionedSession, SQLAlchemyMixin

logger = logging.getLogger('revisioned')


## --------------------------------------------------------
## Introspection

def mapped_columns(mapper):
    '''Yield (attribute key, column) for the mapped columns of the local table.
    '''
    for col in mapper.local_table.c:
        try:
            prop = mapper.get_property_by_column(col)
        except UnmappedColumnError:
            continue
        yield prop.key, col

def column_properties(mapper):
    table = mapper.local_table
    autoincrement = table.autoincrement_column
    properties = []
    for key, col in mapped_columns(mapper):
        serial = col is autoincrement or col.identity is not None
        options = {
            'column': col.name,
            'nullable': col.nullable,
            'index': col.index,
            'unique': col.unique,
            'comment': col.comment,
            'doc': col.doc,
            }
        properties.append(
            PropertySpec(key, col.type, key=col.primary_key, serial=serial,
                options=options)
            )
    return properties


## --------------------------------------------------------
## History class

def history_column(prop):
    options = prop.options
    kwargs = {
        'key': prop.name,
        'primary_key': prop.key,
        'autoincrement': False,
        'nullable': False if prop.key else options.get('nullable', True),
        'index': options.get('index'),
        'comment': options.get('comment'),
        'doc': options.get('doc'),
        }
    # history rows repeat values so uniqueness cannot carry over
    return Column(options.get('column', prop.name), prop.type, **kwargs)

def make_history_class(config):
    '''Create the history table and map a history class onto it.

    E.g. for Story we get a StoryVersion class mapped onto story_versions.
    The table is added to the MetaData of the primary table.
    '''
    primary = config.primary_class
    mapper = class_mapper(primary)
    metadata = mapper.local_table.metadata
    columns = [history_column(prop) for prop in config.history_schema]
    history_table = Table(config.storage_name, metadata, *columns)

    history_class = type(primary.__name__ + 'Version', (SQLAlchemyMixin,), {
        '__module__': primary.__module__,
        '__continuity_class__': primary,
        })
    mapper.registry.map_imperatively(history_class, history_table)
    return history_class

def history_table(cls):
    return class_mapper(revisioning_config(cls).history_class).local_table


class HistoryClassAccessor(object):
    '''The class level Version attribute of a revisioned class.'''

    def __get__(self, instance, owner):
        return revisioning_config(owner).history_class


## --------------------------------------------------------
## Version Policy

def versioned_attribute_changed(instance):
    '''Default version policy: has the revision property changed?

    A new object has never been loaded so all of its properties count as
    changed.
    '''
    config = revisioning_config(type(instance))
    if inspect(instance).key is None:
        return True
    history = attributes.get_history(instance, config.revision_property)
    return history.has_changes()

def set_version_policy(cls, policy=None):
    '''Bind `policy(instance) -> bool` to `cls`. None restores the default.

    The policy is asked on every flush of an instance. SQLAlchemy does not
    flush clean objects, so committing an object with no pending changes
    never makes a snapshot, even with a policy that always says yes.
    '''
    revisioning_config(cls).set_policy(policy)


## --------------------------------------------------------
## Lifecycle

def snapshot_values(mapper, connection, instance):
    '''All column values of `instance` as they stand after its flush.

    Attributes not loaded on the instance (e.g. expired server generated
    values) are read back from the row using `connection`.
    '''
    state = attributes.instance_state(instance)
    values = {}
    missing = []
    for key, col in mapped_columns(mapper):
        if key in state.dict:
            values[key] = state.dict[key]
        else:
            missing.append((key, col))
    if missing:
        criteria = [col == values[key] for key, col in mapped_columns(mapper)
                if col.primary_key]
        q = select(*[col for _, col in missing]).where(and_(*criteria))
        row = connection.execute(q).one()
        for (key, _), value in zip(missing, row):
            values[key] = value
    return values


class Revisioner(LifecycleCoordinator):
    '''Snapshot revisioned objects as they are inserted or updated.

    The before_* mapper events latch the version decision; the after_*
    events (only fired once the statement succeeded) capture the snapshot
    and queue it on the RevisionedSession, which writes it after commit.
    '''

    def __init__(self, config):
        super(Revisioner, self).__init__(config, self.make_snapshot)

    def listen(self):
        cls = self.config.primary_class
        event.listen(cls, 'before_insert', self.before)
        event.listen(cls, 'before_update', self.before)
        event.listen(cls, 'after_insert', self.after)
        event.listen(cls, 'after_update', self.after)

    def before(self, mapper, connection, instance):
        session = object_session(instance)
        if not isinstance(session, RevisionedSession):
            msg = '%r is revisioned and must be saved with a ' \
                    'RevisionedSession' % instance
            raise ConfigurationError(msg)
        wants = self.before_save(instance)
        logger.debug('before save: %r wants new version: %s' % (instance,
            wants))

    def after(self, mapper, connection, instance):
        self.after_save(instance, True, mapper, connection)

    def make_snapshot(self, instance, mapper, connection):
        values = snapshot_values(mapper, connection, instance)
        table = class_mapper(self.config.history_class).local_table
        object_session(instance).queue_snapshot(table, instance, values)


## --------------------------------------------------------
## Configuration

def is_revisioned(cls, on, policy=None):
    '''Revision the mapped class `cls` on its property `on`.

    @param on: name of the revision property (e.g. an updated_at timestamp).
    @param policy: optional version policy, see set_version_policy.
    @return the RevisioningConfig of `cls`.

    The history table only joins the metadata of `cls` once `cls.Version`
    is first accessed. Touch it (or use Repository / auto_create_schema,
    which do) before `metadata.create_all()`, otherwise the history table
    is not created and the first commit raises SnapshotPersistenceError.
    '''
    try:
        mapper = class_mapper(cls)
    except UnmappedClassError:
        raise ConfigurationError('%s is not a mapped class' % cls.__name__)

    config = RevisioningConfig(cls, on, column_properties(mapper),
            policy or versioned_attribute_changed, make_history_class)
    table = mapper.local_table
    if config.storage_name in table.metadata.tables:
        msg = 'History table %s for %s already exists' % (config.storage_name,
                cls.__name__)
        raise ConfigurationError(msg)

    register(config)
    Revisioner(config).listen()
    cls.Version = HistoryClassAccessor()
    logger.debug('%s revisioned on %s' % (cls.__name__, on))
    return config

enable_revisioning = is_revisioned


## --------------------------------------------------------
## Queries

def versions(instance, include_current=False):
    '''Get the snapshots of `instance`, most recent first.

    @param include_current: reserved, currently has no effect.
    '''
    config = revisioning_config(type(instance))
    session = object_session(instance)
    if session is None:
        raise InvalidRequestError('%r is not attached to a session' %
                instance)
    history_class = config.history_class
    table = class_mapper(history_class).local_table
    mapper = object_mapper(instance)
    key_values = mapper.primary_key_from_instance(instance)
    criteria = []
    for col, value in zip(mapper.primary_key, key_values):
        key = mapper.get_property_by_column(col).key
        criteria.append(table.c[key] == value)
    order = [table.c[key].desc() for key in config.history_key]
    q = select(history_class).where(and_(*criteria)).order_by(*order)
    return session.scalars(q).all()


class RevisionedObjectMixin(object):

    __revisioned__ = True

    def versions(self, include_current=False):
        return versions(self, include_current)

    def wants_new_version(self):
        return revisioning_config(type(self)).wants_new_version(self)

    def versioned_attribute_changed(self):
        return versioned_attribute_changed(self)
