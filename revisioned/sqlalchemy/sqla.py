'''Generic sqlalchemy code (not specifically tied to a revisioned class).
'''
import logging

from sqlalchemy import event, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, class_mapper

from revisioned.base import SnapshotPersistenceError

logger = logging.getLogger('revisioned')


class SQLAlchemyMixin(object):
    def __init__(self, **kw):
        for k, v in kw.items():
            setattr(self, k, v)

    def __repr__(self):
        out = '<%s' % self.__class__.__name__
        mapper = class_mapper(self.__class__)
        for prop in mapper.column_attrs:
            out += ' %s=%s' % (prop.key, getattr(self, prop.key))
        out += '>'
        return out


class RevisionedSession(Session):
    '''Session which records snapshots once the primary commit succeeded.

    Snapshots are queued while flushing (see Revisioner), tagged with the
    innermost transaction (savepoint or root) they were flushed in. They
    follow that transaction:

      * rolling back a savepoint or the root transaction drops the snapshots
        queued inside it,
      * closing the session without committing drops them,
      * once the root transaction has committed they are inserted in a
        second transaction on the bind of the history table.

    This holds however the transaction is ended: Session.commit(),
    ``with session.begin():`` or committing the transaction object. If the
    snapshot insert fails the primary changes stay committed and
    SnapshotPersistenceError is raised.

    Use it through a sessionmaker::

        Session = sessionmaker(class_=RevisionedSession)

    NB: snapshots are written on a fresh connection from the bind's engine,
    so a session joined to an outer (e.g. test) transaction writes them
    outside of it.
    '''

    def __init__(self, *args, **kw):
        self.pending_snapshots = []
        self.committed_transaction = None
        super(RevisionedSession, self).__init__(*args, **kw)

    def queue_snapshot(self, history_table, instance, values):
        logger.debug('Queueing snapshot of %r for %s' % (instance,
            history_table.name))
        transaction = self.get_nested_transaction() or self.get_transaction()
        self.pending_snapshots.append(
                (transaction, history_table, instance, values))

    def write_snapshots(self):
        pending, self.pending_snapshots = self.pending_snapshots, []
        if not pending:
            return
        try:
            by_bind = {}
            for _, history_table, instance, values in pending:
                bind = self.get_bind(clause=history_table)
                stmt = insert(history_table).values(**values)
                by_bind.setdefault(bind.engine, []).append(stmt)
            for engine, statements in by_bind.items():
                with engine.begin() as conn:
                    for stmt in statements:
                        conn.execute(stmt)
        except SQLAlchemyError as e:
            instances = [instance for _, _, instance, _ in pending]
            msg = 'Changes committed but recording %d snapshot(s) failed: %s' \
                    % (len(pending), e)
            logger.error(msg)
            raise SnapshotPersistenceError(msg, instances, e)
        logger.debug('Wrote %d snapshot(s)' % len(pending))

    def discard_snapshots(self, transaction=None):
        '''Drop queued snapshots flushed in `transaction` or any transaction
        nested in it (all of them if `transaction` is None).
        '''
        if transaction is None:
            keep = []
        else:
            keep = [entry for entry in self.pending_snapshots
                    if transaction not in _self_and_parents(entry[0])]
        dropped = len(self.pending_snapshots) - len(keep)
        if dropped:
            logger.debug('Discarding %d queued snapshot(s)' % dropped)
        self.pending_snapshots = keep


def _self_and_parents(transaction):
    while transaction is not None:
        yield transaction
        transaction = transaction.parent


@event.listens_for(RevisionedSession, 'after_soft_rollback')
def _discard_rolled_back(session, previous_transaction):
    # a rolled back flush subtransaction takes its enclosing savepoint or
    # root transaction with it
    boundary = previous_transaction
    while not boundary.nested and boundary.parent is not None:
        boundary = boundary.parent
    session.discard_snapshots(boundary)


@event.listens_for(RevisionedSession, 'after_commit')
def _mark_committed(session):
    # fired for savepoint releases too, only the root commit counts
    if session.get_nested_transaction() is None:
        session.committed_transaction = session.get_transaction()


@event.listens_for(RevisionedSession, 'after_transaction_end')
def _transaction_end(session, transaction):
    if transaction.parent is not None:
        return
    committed = transaction is session.committed_transaction
    session.committed_transaction = None
    if committed:
        session.write_snapshots()
    else:
        session.discard_snapshots()
