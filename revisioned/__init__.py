'''
About
=====

Revisioned is a package which keeps a full history of your domain objects in
a 'shadow' table alongside the table of each object. Whenever a revisioned
object is created, or its revision field changes, a complete copy of the
object is appended to its history table.

At present the package is provided as an extension to SQLAlchemy.


Copyright and License
=====================

Licensed under the MIT license:

  <http://www.opensource.org/licenses/mit-license.php>


How it Works
============

For each revisioned domain object we end up with 2 domain objects:

  * The 'primary': the original domain object.
  * The 'version': the snapshots of that domain object, one per revision.

Unlike a revision counter the version is identified by a field of your
choosing (an updated_at timestamp is the usual one) which must be unique per
object on every update. The history table has the same columns as the
primary table, keyed on the primary key plus that field.

To give a flavour of all of this::

    class Story(RevisionedObjectMixin, Base):
        __tablename__ = 'story'
        id = Column(Integer, primary_key=True)
        title = Column(String(200))
        updated_at = Column(DateTime)

    is_revisioned(Story, on='updated_at')

    session = RevisionedSession(bind=engine)
    story = Story(title='A Title')
    session.add(story)
    session.commit()             # creates a version
    len(story.versions())        # => 1

    story.title = 'New Title'    # (updated_at gets touched on update)
    session.commit()             # saves the story and creates a version
    len(story.versions())        # => 2

    Story.Version                # the mapped history class

By default a version is made when the object is created or when the
revision field changes. Use set_version_policy to decide for yourself.


Code in Action
--------------

To see some real code in action take a look at::

    revisioned/sqlalchemy/demo.py
    revisioned/sqlalchemy/demo_test.py
'''
__version__ = '0.5a'
__description__ = 'Full-snapshot history tables for SQLAlchemy domain objects.'
