# ecs-remote packaging

import os
import sys
import pathlib

from setuptools import setup, find_packages
from setuptools.command.install import install

import ecs_remote

HERE = pathlib.Path(__file__).parent
README = (HERE / "README.md").read_text()

VERSION = ecs_remote.__version__

requirements = HERE / "requirements.txt"
with requirements.open() as f:
    reqs = [req.strip() for req in f.readlines() if req.strip() and not req.startswith("#")]


class VerifyVersionCommand(install):
    """Custom command to verify that the git tag matches our version"""

    description = "verify that the git tag matches our version"

    def run(self) -> None:
        tag = os.getenv("CIRCLE_TAG")
        if not tag:
            sys.exit("Env var $CIRCLE_TAG is not defined - are we running a CircleCI build?")

        if tag.startswith("v"):  # If tag is v1.2.3 make it 1.2.3
            tag = tag[1:]

        if tag != VERSION:
            info = f"Git tag: {tag} does not match the version of this app: {VERSION}"
            sys.exit(info)


setup(
    name="ecs-remote",
    version=VERSION,
    packages=find_packages(exclude=["tests", "tests.*"]),
    entry_points={
        "console_scripts": [
            "ecs-remote = ecs_remote.ecs_remote_cli:main",
        ],
    },
    python_requires=">=3.9",
    install_requires=reqs,
    extras_require={
        "test": ["pytest"],
    },
    package_data={
        "": ["*.txt", "*.md"],
    },
    description="Open an interactive shell in a running ECS container with 'execute-command'",
    long_description=README,
    long_description_content_type="text/markdown",
    license="Apache License 2.0",
    keywords="aws ecs fargate execute-command ssm session-manager-plugin",
    classifiers=[
        "Environment :: Console",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Systems Administration",
    ],
    cmdclass={
        "verify": VerifyVersionCommand,
    },
)
