# Copyright ClusterHQ Inc.  See LICENSE file for details.

"""
Generate a volplugin EBS storage driver package.
"""

import re

from setuptools import setup, find_packages

with open("README.rst") as readme:
    description = readme.read()

with open("volplugin/__init__.py") as init:
    version = re.search(
        r'^__version__ = "([^"]+)"', init.read(), re.MULTILINE).group(1)


def parse_requirements(requirements_file, dependency_links):
    """
    Parse a requirements file.

    Environment markers are passed through for setuptools to evaluate.

    ``--find-links`` lines will be added to the supplied ``dependency_links``
    list.
    """
    requirements = []
    with open(requirements_file) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            elif line.startswith('--find-links'):
                link = line.split(None, 1)[1]
                dependency_links.append(link)
            else:
                requirements.append(line)
    return requirements

# Parse the ``.in`` files. This will allow the dependencies to float when
# volplugin is installed using ``pip install .``.
dependency_links = []
install_requires = parse_requirements(
    "requirements/volplugin.txt.in",
    dependency_links,
)
dev_requires = parse_requirements(
    "requirements/volplugin-dev.txt.in",
    dependency_links,
)

setup(
    # This is the human-targetted name of the software being packaged.
    name="volplugin-ebs",
    # This is a string giving the version of the software being packaged.  For
    # simplicity it should be something boring like X.Y.Z.
    version=version,
    # This identifies the creators of this software.  This is left symbolic for
    # ease of maintenance.
    author="volplugin developers",

    # A short identifier for the license under which the project is released.
    license="Apache License, Version 2.0",

    # Some details about what volplugin is.  Synchronized with the README.rst
    # to keep it up to date more easily.
    long_description=description,

    # This setuptools helper will find everything that looks like a *Python*
    # package (in other words, things that can be imported) which are part of
    # the volplugin package.
    packages=find_packages(include=('volplugin', 'volplugin.*')),

    python_requires=">=3.8",

    entry_points={
        # These are the command-line programs we want setuptools to install.
        'console_scripts': [
            'volplugin-ebs = '
            'volplugin.storage.backend.ebs.script:volplugin_ebs_main',
        ],
    },

    install_requires=install_requires,

    extras_require={
        # This extra is for developers who need to work on volplugin itself.
        "dev": dev_requires,
    },

    # Duplicate dependency links may have been added from different
    # requirements files.
    dependency_links=list(set(dependency_links)),

    # Some "trove classifiers" which are relevant.
    classifiers=[
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        ],
    )
