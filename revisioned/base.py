'''Revisioning core which is independent of any particular ORM.

Three pieces live here:

  1. Schema mirroring: turn the properties of a primary domain object into
     the properties of its history object (derive_history_schema).
  2. The registry of revisioned classes, one RevisioningConfig per class,
     which holds the revision property, the version policy and the lazily
     built history class.
  3. The LifecycleCoordinator which latches the version decision before a
     save and records a snapshot after it.

ORM specific code (see revisioned.sqlalchemy) supplies property
introspection, dirty tracking, the hooks and the actual snapshot writes.
'''
import collections
import logging
import re
import threading

logger = logging.getLogger('revisioned')


class RevisionedError(Exception):
    pass


class ConfigurationError(RevisionedError):
    '''Revisioning has been set up incorrectly.'''


class SchemaDerivationError(RevisionedError):
    '''The history schema cannot be derived from the primary schema.'''


class SnapshotPersistenceError(RevisionedError):
    '''Recording snapshots failed *after* the primary changes were committed.

    The primary changes are durable. `instances` lists the primary objects
    whose snapshots were not recorded and `orig` is the underlying error.
    '''

    def __init__(self, message, instances=(), orig=None):
        super(SnapshotPersistenceError, self).__init__(message)
        self.instances = list(instances)
        self.orig = orig


## --------------------------------------------------------
## Schema Mirroring

class PropertySpec(collections.namedtuple('PropertySpec',
        'name type key serial options')):
    '''A property of a domain object.

    @param key: True if the property is (part of) the identity of the object.
    @param serial: True if the value is auto generated (autoincrement etc).
    @param options: any other options (nullable, index, ...).
    '''
    __slots__ = ()

    def __new__(cls, name, type, key=False, serial=False, options=None):
        return super(PropertySpec, cls).__new__(cls, name, type,
                bool(key), bool(serial), dict(options or {}))


# key semantics must come through the key/serial flags only
CONFLICTING_OPTIONS = ('primary_key', 'key', 'autoincrement', 'serial')

def derive_history_schema(properties, revision_property):
    '''Derive the properties of the history object from `properties`.

    Every property is copied. The revision property and any serial property
    become part of the key (as do the keys of the primary) and no property of
    the history object is serial: history rows are addressed by identity plus
    revision and never numbered automatically.

    @return list of PropertySpec in the order given.
    '''
    properties = list(properties)
    names = [prop.name for prop in properties]
    if revision_property not in names:
        msg = 'Revision property %r is not one of: %s' % (revision_property,
                ', '.join(names))
        raise ConfigurationError(msg)

    seen = set()
    derived = []
    for prop in properties:
        if prop.name in seen:
            raise SchemaDerivationError('Property %r defined more than once' %
                    prop.name)
        seen.add(prop.name)
        conflicting = [opt for opt in CONFLICTING_OPTIONS
                if opt in prop.options]
        if conflicting:
            msg = 'Property %r has options %s which conflict with its key ' \
                    'and serial flags' % (prop.name, ', '.join(conflicting))
            raise SchemaDerivationError(msg)
        key = prop.key or prop.serial or prop.name == revision_property
        derived.append(
            PropertySpec(prop.name, prop.type, key=key, serial=False,
                options=prop.options)
            )
    return derived

def history_key(schema):
    return [prop.name for prop in schema if prop.key]


def pluralize(word):
    if re.search('[^aeiou]y$', word):
        return word[:-1] + 'ies'
    if re.search('(s|x|z|ch|sh)$', word):
        return word + 'es'
    return word + 's'

def tableize(name):
    '''Turn a CamelCase class name into a plural table name.

        >>> tableize('StoryVersion')
        'story_versions'
    '''
    words = re.sub('([A-Z]+)([A-Z][a-z])', r'\1_\2', name)
    words = re.sub('([a-z0-9])([A-Z])', r'\1_\2', words)
    return pluralize(words.lower())

def history_storage_name(entity_name):
    return tableize(entity_name + 'Version')


## --------------------------------------------------------
## Registry

class RevisioningConfig(object):
    '''Everything needed to revision one primary class.

    The history schema is derived immediately so that configuration errors
    surface when revisioning is set up. The history class itself is built by
    `materialize(config)` on first access and then cached.
    '''

    def __init__(self, primary_class, revision_property, properties, policy,
            materialize):
        self.primary_class = primary_class
        self.revision_property = revision_property
        self.properties = tuple(properties)
        self.history_schema = tuple(
                derive_history_schema(self.properties, revision_property))
        self.history_key = history_key(self.history_schema)
        self.storage_name = history_storage_name(primary_class.__name__)
        self.default_policy = policy
        self.policy = policy
        self._materialize = materialize
        self._history_class = None
        self._lock = threading.Lock()

    def __repr__(self):
        return '<RevisioningConfig %s on %s>' % (self.primary_class.__name__,
                self.revision_property)

    def wants_new_version(self, instance):
        return bool(self.policy(instance))

    def set_policy(self, policy=None):
        self.policy = policy or self.default_policy

    @property
    def history_class(self):
        if self._history_class is None:
            with self._lock:
                if self._history_class is None:
                    logger.info('Creating history class %s for %s' %
                            (self.storage_name, self.primary_class.__name__))
                    self._history_class = self._materialize(self)
        return self._history_class

    @property
    def materialized(self):
        return self._history_class is not None


_registry = {}
_registry_lock = threading.Lock()

def register(config):
    with _registry_lock:
        if config.primary_class in _registry:
            raise ConfigurationError('%s is already revisioned' %
                    config.primary_class.__name__)
        _registry[config.primary_class] = config
    return config

def unregister(cls):
    with _registry_lock:
        return _registry.pop(cls, None)

def lookup(cls):
    '''Get the RevisioningConfig for `cls` (or a base class) or None.'''
    for klass in cls.__mro__:
        config = _registry.get(klass)
        if config is not None:
            return config
    return None

def revisioning_config(cls):
    config = lookup(cls)
    if config is None:
        raise ConfigurationError('%s is not revisioned' % cls.__name__)
    return config

def revisioned_classes():
    with _registry_lock:
        return list(_registry)


## --------------------------------------------------------
## Lifecycle

class LifecycleCoordinator(object):
    '''Tie the version decision to the save of a primary object.

    before_save must run before the object is written and after_save once
    the write has been attempted. The decision is latched on the instance in
    between since the policy can only see what changed before the write.
    '''

    latch_attribute = '_revisioned_wants_version'

    def __init__(self, config, record_snapshot):
        self.config = config
        self.record_snapshot = record_snapshot

    def before_save(self, instance):
        # a policy error aborts the save
        wants = self.config.wants_new_version(instance)
        setattr(instance, self.latch_attribute, wants)
        return wants

    def after_save(self, instance, result, *args):
        '''Record a snapshot if the save succeeded and one was wanted.

        @return True if a snapshot was recorded.
        '''
        wants = getattr(instance, self.latch_attribute, False)
        try:
            if result and wants:
                self.record_snapshot(instance, *args)
                return True
            return False
        finally:
            self.discard(instance)

    def discard(self, instance):
        setattr(instance, self.latch_attribute, False)
