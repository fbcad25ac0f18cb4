#!/usr/bin/python3
# Setup file for autosquash
# Copyright (C) 2025 Autosquash contributors
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import setup

install_requires = [
    "dulwich>=0.25",
    # dulwich.merge only merges file contents when merge3 is available
    "merge3",
]


setup(
    name="autosquash",
    version="0.1.0",
    description="Fold fixup, squash and revert commits into a clean history",
    license="Apache-2.0 OR GPL-2.0-or-later",
    python_requires=">=3.9",
    packages=["autosquash"],
    package_data={"": ["py.typed"]},
    install_requires=install_requires,
    test_suite="tests.test_suite",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "License :: OSI Approved :: Apache Software License",
        "License :: OSI Approved :: GNU General Public License v2 or later (GPLv2+)",
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "Topic :: Software Development :: Version Control",
    ],
)
