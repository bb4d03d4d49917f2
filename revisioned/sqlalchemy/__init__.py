'''SQLAlchemy revisioned domain object extension.

For general information see the root revisioned package docstring.

Implementation Notes
====================

SQLAlchemy mapper events (before/after insert and update) play the part of
the save hooks: the version decision is taken in the before hook, the
snapshot values are captured in the after hook once the statement
succeeded. RevisionedSession follows its transactions through session
events: snapshots of a rolled back savepoint or transaction are dropped, and
the rest are written once the root transaction has committed (whether by
Session.commit() or a ``with session.begin():`` block). A failing snapshot
never loses the primary change but is reported with
SnapshotPersistenceError.

The history table is built from the columns of the primary table rather
than by copying Column objects, as copied columns only carry basic info
until they have a parent table.
'''
from revisioned.base import ConfigurationError, SchemaDerivationError, \
        SnapshotPersistenceError, revisioning_config
from .base import is_revisioned, enable_revisioning, versions, \
        versioned_attribute_changed, set_version_policy, history_table, \
        RevisionedObjectMixin, Revisioner
from .sqla import SQLAlchemyMixin, RevisionedSession
from .tools import Repository, auto_create_schema, auto_alter_schema
