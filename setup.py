#!/usr/bin/env python
from setuptools import setup, find_packages
from os import path
import sys

min_py_version = (3, 10)

if sys.version_info < min_py_version:
    sys.exit(
        "partprune is only supported for Python {}.{} or higher".format(*min_py_version)
    )

here = path.abspath(path.dirname(__file__))

long_description = (
    "Partition pruning metadata caches for RANGE and HASH partitioned tables."
)

# read in version number into __version__
with open(path.join(here, "src", "partprune", "version.py")) as f:
    exec(f.read())

with open(path.join(here, "requirements.txt")) as f:
    requirements = [line.split("#", 1)[0].rstrip() for line in f.readlines()]
    requirements = [r for r in requirements if r]

setup(
    name="partprune",
    version=__version__,
    description="Partition pruning metadata caches.",
    long_description=long_description,
    author="partprune Contributors",
    license="GNU LGPL",
    keywords=[
        "database",
        "partitioning",
        "query planning",
    ],
    package_dir={"": "src"},
    packages=find_packages(where="src", exclude=["contrib", "docs", "tests*"]),
    install_requires=requirements,
    extras_require={"test": ["pytest"]},
    python_requires=">={}.{}".format(*min_py_version),
)
