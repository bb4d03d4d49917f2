from setuptools import setup, find_packages

from revisioned import __version__
from revisioned import __description__
from revisioned import __doc__ as __long_description__

setup(
    name = 'revisioned',
    version = __version__,
    packages = find_packages(),
    install_requires = [
        'SQLAlchemy>=2.0.4',
        ],
    extras_require = {
        'test': ['pytest'],
        },

    # metadata for upload to PyPI
    description = __description__,
    long_description = __long_description__,
    license = "MIT",
    keywords = "versioning revisions history sqlalchemy orm",
    zip_safe = False,
    classifiers = [
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Topic :: Database',
        'Topic :: Software Development :: Libraries :: Python Modules'],
)
