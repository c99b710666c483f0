#!/usr/bin/env python3
"""
Ring-Cache Setup Script
=======================
Allows installation of the ring-cache package.

Usage:
    pip install -e .           # Development install
    pip install -e ".[test]"   # Development install with test tools
    pip install .              # Regular install
"""

from setuptools import setup, find_packages

setup(
    name="ring-cache",
    version="1.0.0",
    packages=find_packages(include=["ringcache", "ringcache.*"]),
    python_requires=">=3.10",
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
)
