'''Demo revisioned domain model.

Story is keyed on a serial id and revisioned on an updated_at timestamp,
Page is keyed on (slug, lang) and revisioned on a plain counter. Both touch
their revision field whenever they are flushed (the listeners must be in
place before is_revisioned so they run first).
'''
from datetime import datetime, timedelta

from sqlalchemy import Column, DateTime, Integer, String, UnicodeText, event
from sqlalchemy.orm import declarative_base, scoped_session, sessionmaker

from revisioned.sqlalchemy import RevisionedObjectMixin, RevisionedSession, \
        SQLAlchemyMixin, is_revisioned

Base = declarative_base()
metadata = Base.metadata

Session = scoped_session(
    sessionmaker(class_=RevisionedSession, expire_on_commit=False)
    )


class Story(RevisionedObjectMixin, SQLAlchemyMixin, Base):
    __tablename__ = 'story'

    id = Column(Integer, primary_key=True)
    title = Column(String(200))
    updated_at = Column(DateTime)

    def __repr__(self):
        return '<Story %s>' % self.id


class Page(RevisionedObjectMixin, SQLAlchemyMixin, Base):
    __tablename__ = 'page'

    slug = Column(String(100), primary_key=True)
    lang = Column(String(8), primary_key=True)
    body = Column(UnicodeText)
    number = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return '<Page %s/%s>' % (self.lang, self.slug)


@event.listens_for(Story, 'before_insert')
@event.listens_for(Story, 'before_update')
def touch_story(mapper, connection, story):
    # make sure updated_at is unique for every flush
    if story.updated_at:
        story.updated_at = story.updated_at + timedelta(seconds=1)
    else:
        story.updated_at = datetime.now()

@event.listens_for(Page, 'before_insert')
@event.listens_for(Page, 'before_update')
def touch_page(mapper, connection, page):
    page.number = (page.number or 0) + 1


is_revisioned(Story, on='updated_at')
is_revisioned(Page, on='number')

StoryVersion = Story.Version
PageVersion = Page.Version
