#!/usr/bin/env python3
"""
Setup script for rig-bridge
"""

from setuptools import setup

# Read the README file
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Read the requirements file
with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

# Read version from version.py
version = "1.0.0"
with open("src/version.py", "r", encoding="utf-8") as fh:
    for line in fh:
        if line.startswith("__version__ = "):
            version = line.split('"')[1]
            break

setup(
    name="rig-bridge",
    version=version,
    author="OpenHamClock contributors",
    author_email="",
    description="Radio-control protocol bridge exposing rig state over HTTP and Server-Sent Events",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=["rig_bridge", "rig_bridge.protocols", "rig_bridge.plugins"],
    package_dir={"rig_bridge": "src"},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications :: Ham Radio",
    ],
    python_requires=">=3.8",
    install_requires=requirements,
    entry_points={
        "console_scripts": [
            "rig-bridge=rig_bridge.main:main",
        ],
    },
    extras_require={
        "test": [
            "pytest",
        ],
        "dev": [
            "pytest",
            "pytest-cov",
            "black",
            "flake8",
        ],
    },
)
