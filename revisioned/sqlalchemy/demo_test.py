import logging
from datetime import timedelta

import pytest
from sqlalchemy import func, insert, select
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.orm import Session as PlainSession

from revisioned.sqlalchemy import ConfigurationError, Repository, \
        SnapshotPersistenceError, history_table, revisioning_config, \
        set_version_policy
from revisioned.sqlalchemy.demo import *

logger = logging.getLogger('revisioned')

repo = Repository(metadata, Session, 'sqlite://',
        revisioned_objects=[Story, Page])

def count(cls):
    return Session.scalar(select(func.count()).select_from(cls))

def all_versions(cls):
    return Session.scalars(select(cls)).all()


class TestInnerClass:

    def test_present(self):
        assert isinstance(Story.Version, type)
        assert Story.Version is StoryVersion
        assert StoryVersion.__continuity_class__ is Story

    def test_storage_name(self):
        assert history_table(Story).name == 'story_versions'
        assert history_table(Page).name == 'page_versions'

    def test_parent_properties(self):
        for col in Story.__table__.c:
            assert col.key in history_table(Story).c

    def test_key(self):
        keys = [col.name for col in history_table(Story).primary_key]
        assert keys == ['id', 'updated_at']

    def test_composite_key(self):
        keys = [col.name for col in history_table(Page).primary_key]
        assert keys == ['slug', 'lang', 'number']

    def test_not_serial(self):
        assert history_table(Story).c.id.autoincrement is False
        assert history_table(Story).autoincrement_column is None


class RevisionedTestCase:

    def setup_method(self, name=''):
        Session.remove()
        repo.rebuild_db()

    def teardown_method(self, name=''):
        Session.remove()
        set_version_policy(Story, None)

    def create_story(self, title='A Story'):
        story = Story(title=title)
        Session.add(story)
        Session.commit()
        return story


class TestCreate(RevisionedTestCase):

    def test_create(self):
        story = self.create_story('A Very Interesting Article')
        assert count(StoryVersion) == 1
        version = all_versions(StoryVersion)[0]
        assert version.id == story.id
        assert version.title == 'A Very Interesting Article'
        assert version.updated_at == story.updated_at

    def test_create_several(self):
        Session.add_all([Story(title='one'), Story(title='two')])
        Session.commit()
        assert count(StoryVersion) == 2


class TestSave(RevisionedTestCase):

    def test_clean_existing(self):
        self.create_story()
        Session.commit()
        assert count(StoryVersion) == 1

    def test_clean_existing_reloaded(self):
        story = self.create_story()
        Session.remove()
        story = Session.get(Story, story.id)
        Session.commit()
        assert count(StoryVersion) == 1

    def test_dirty_existing(self):
        story = self.create_story()
        story.title = 'An Inner Update'
        story.title = 'An Updated Story'
        Session.commit()
        assert count(StoryVersion) == 2
        oldest = story.versions()[-1]
        assert story.updated_at != oldest.updated_at

    def test_version_has_committed_revision(self):
        story = self.create_story()
        story.title = 'An Updated Story'
        Session.commit()
        latest = story.versions()[0]
        assert latest.updated_at == story.updated_at
        assert latest.title == 'An Updated Story'

    def test_scenario(self):
        story = self.create_story('A')
        assert len(story.versions()) == 1
        story.title = 'B'
        Session.commit()
        first, second = story.versions()[1], story.versions()[0]
        assert second.updated_at != first.updated_at
        Session.commit()
        assert len(story.versions()) == 2

    def test_flush_then_rollback(self):
        Session.add(Story(title='Never'))
        Session.flush()
        assert len(Session().pending_snapshots) == 1
        Session.rollback()
        assert Session().pending_snapshots == []
        Session.commit()
        assert count(Story) == 0
        assert count(StoryVersion) == 0

    def test_flush_then_close(self):
        Session.add(Story(title='Never'))
        Session.flush()
        Session.close()
        assert Session().pending_snapshots == []
        assert count(Story) == 0
        assert count(StoryVersion) == 0

    def test_begin_block(self):
        session = Session()
        with session.begin():
            session.add(Story(title='In a block'))
        assert session.pending_snapshots == []
        Session.remove()
        assert count(Story) == 1
        assert [v.title for v in all_versions(StoryVersion)] == ['In a block']

    def test_begin_block_error(self):
        session = Session()
        with pytest.raises(ValueError):
            with session.begin():
                session.add(Story(title='Never'))
                session.flush()
                raise ValueError('abort')
        assert session.pending_snapshots == []
        assert count(Story) == 0
        assert count(StoryVersion) == 0

    def test_transaction_object_commit(self):
        session = Session()
        transaction = session.begin()
        session.add(Story(title='Committed'))
        transaction.commit()
        assert count(StoryVersion) == 1

    def test_savepoint_rollback(self):
        Session.add(Story(title='kept'))
        Session.flush()
        nested = Session.begin_nested()
        Session.add(Story(title='ghost'))
        Session.flush()
        assert len(Session().pending_snapshots) == 2
        nested.rollback()
        assert len(Session().pending_snapshots) == 1
        Session.commit()
        assert [s.title for s in all_versions(Story)] == ['kept']
        assert [v.title for v in all_versions(StoryVersion)] == ['kept']

    def test_savepoint_release(self):
        Session.add(Story(title='outer'))
        Session.flush()
        with Session.begin_nested():
            Session.add(Story(title='inner'))
        Session.commit()
        titles = sorted(v.title for v in all_versions(StoryVersion))
        assert titles == ['inner', 'outer']

    def test_released_savepoint_rolled_back_with_root(self):
        Session.add(Story(title='outer'))
        Session.flush()
        with Session.begin_nested():
            Session.add(Story(title='inner'))
        Session.rollback()
        Session.commit()
        assert count(StoryVersion) == 0

    def test_plain_session_rejected(self):
        session = PlainSession(bind=repo.engine)
        session.add(Story(title='Plain'))
        with pytest.raises(ConfigurationError):
            session.commit()
        session.rollback()
        session.close()
        assert count(Story) == 0


class TestVersions(RevisionedTestCase):

    def test_versions(self):
        story = self.create_story()
        exp = Session.scalars(
                select(StoryVersion).where(StoryVersion.id == story.id)
                ).all()
        assert story.versions() == exp

    def test_not_another_objects_versions(self):
        story = self.create_story()
        story2 = self.create_story('A Different Story')
        story2.title = 'A Different Title'
        Session.commit()
        assert [v.id for v in story.versions()] == [story.id]
        assert [v.id for v in story2.versions()] == [story2.id] * 2

    def test_most_recent_first(self):
        story = self.create_story('v1')
        for title in ['v2', 'v3']:
            story.title = title
            Session.commit()
        out = story.versions()
        assert [v.title for v in out] == ['v3', 'v2', 'v1']
        stamps = [v.updated_at for v in out]
        assert stamps == sorted(stamps, reverse=True)

    def test_include_current_reserved(self):
        story = self.create_story()
        assert story.versions(include_current=True) == story.versions()

    def test_no_versions(self):
        set_version_policy(Story, lambda story: False)
        story = self.create_story()
        assert story.versions() == []

    def test_detached(self):
        with pytest.raises(InvalidRequestError):
            Story(title='Loose').versions()

    def test_composite_key_isolation(self):
        en = Page(slug='intro', lang='en', body=u'Hello')
        de = Page(slug='intro', lang='de', body=u'Hallo')
        other = Page(slug='other', lang='en', body=u'Other')
        Session.add_all([en, de, other])
        Session.commit()
        en.body = u'Hello there'
        Session.commit()
        de.body = u'Hallo du'
        Session.commit()
        de.body = u'Guten Tag'
        Session.commit()

        out = en.versions()
        assert [(v.slug, v.lang, v.number) for v in out] == \
                [('intro', 'en', 2), ('intro', 'en', 1)]
        out = de.versions()
        assert [(v.lang, v.number) for v in out] == \
                [('de', 3), ('de', 2), ('de', 1)]
        assert [v.slug for v in other.versions()] == ['other']
        assert count(PageVersion) == 6


class TestVersionPolicy(RevisionedTestCase):

    def test_default(self):
        assert revisioning_config(Story).policy is \
                revisioning_config(Story).default_policy
        story = self.create_story()
        assert not story.wants_new_version()
        story.updated_at = story.updated_at + timedelta(days=1)
        assert story.wants_new_version()
        assert story.versioned_attribute_changed()

    def test_wants_a_new_version(self):
        set_version_policy(Story, lambda story: True)
        story = self.create_story()
        assert count(StoryVersion) == 1
        # no real change, the flush still touches updated_at
        story.title = story.title
        Session.commit()
        assert count(StoryVersion) == 2

    def test_clean_commit(self):
        set_version_policy(Story, lambda story: True)
        self.create_story()
        # nothing is flushed so the policy is never asked
        Session.commit()
        assert count(StoryVersion) == 1

    def test_does_not_want_a_new_version(self):
        set_version_policy(Story, lambda story: False)
        story = self.create_story()
        assert all_versions(StoryVersion) == []
        story.title = 'A New Hope'
        Session.commit()
        assert all_versions(StoryVersion) == []

    def test_policy_error_aborts_save(self):
        def policy(story):
            raise ValueError('policy failed')
        set_version_policy(Story, policy)
        Session.add(Story(title='Aborted'))
        with pytest.raises(ValueError):
            Session.commit()
        Session.rollback()
        assert count(Story) == 0
        assert count(StoryVersion) == 0


class TestSnapshotFailure(RevisionedTestCase):

    def test_primary_committed(self):
        story = self.create_story('A')
        story_id = story.id
        # occupy the history key the next update will use
        Session.execute(insert(history_table(Story)).values(id=story.id,
            title='Clash', updated_at=story.updated_at + timedelta(seconds=1)))
        story.title = 'B'
        with pytest.raises(SnapshotPersistenceError) as info:
            Session.commit()
        assert info.value.instances == [story]
        assert info.value.orig is not None
        assert Session().pending_snapshots == []

        Session.remove()
        assert Session.get(Story, story_id).title == 'B'
        titles = sorted(v.title for v in all_versions(StoryVersion))
        assert titles == ['A', 'Clash']
