#!/usr/bin/env python
#

from setuptools import setup

from voxdrop import __version__

setup(
    name="voxdrop",
    version=__version__,
    description="The account and inbox store behind the VoxDrop service",
    long_description=(
        "voxdrop keeps user accounts and their inboxes of delivered video "
        "messages in memory, persisted to an atomically rewritten snapshot "
        "file, with password hashing and signed session tokens."
    ),
    author="Scanner",
    author_email="scanner@apricot.com",
    packages=["voxdrop"],
    python_requires=">=3.11",
    install_requires=[
        "aiofiles",
        "docopt",
        "python-dotenv",
        "python-json-logger>=3.1",
        "PyJWT>=2.8",
        "sentry-sdk",
    ],
    extras_require={
        "test": [
            "dirty-equals",
            "factory_boy",
            "Faker",
            "pytest",
            "pytest-asyncio",
            "pytest-mock",
        ],
    },
    entry_points={
        "console_scripts": [
            "voxdrop_admin = voxdrop.voxdrop_admin:main",
        ],
    },
)
