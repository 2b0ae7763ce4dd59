"""
ldap-sync
---------

A rule based synchronization of LDAP directories (e.g. Active Directory)
into an object store.

Notes for developers
--------------------

On a running system, you can just execute ``pip install -e .`` to update
e.g. console script names.  The tests need the ``test`` extra.
"""

from setuptools import setup, find_packages

setup(
    name="ldap-sync",
    author="The ldap-sync Authors",
    description="Rule based LDAP to object store synchronization",
    long_description=__doc__,
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    zip_safe=False,
    python_requires=">= 3.11",
    install_requires=[
        'ldap3',
        'SQLAlchemy >= 2.0',
        'jsonschema',
        'passlib',
        'simplejson',
        'wrapt',
    ],
    extras_require={
        'test': [
            'factory-boy',
            'pytest',
        ]
    },
    entry_points={
        'console_scripts': [
            'ldap_sync = ldap_sync.__main__:main',
        ]
    },
    license="Apache Software License",
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: Apache Software License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3.12',
        'Topic :: System :: Systems Administration :: Authentication/Directory :: LDAP',
    ],
)
