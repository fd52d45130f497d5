#!/usr/bin/env python3
"""
Setup script for the DDP chat client
"""

from setuptools import setup, find_namespace_packages

setup(
    name="ddpchat",
    version="0.1.0",
    description="DDP publish/subscribe RPC client with a chat REPL",
    packages=find_namespace_packages(include=["ddpclient", "ddpclient.*", "shared", "shared.*"]),
    install_requires=[
        "websockets>=15.0",
        "cryptography>=43.0.1",
        "typer>=0.12.3",
        "rich>=13.9.2",
        "aioconsole>=0.8.1",
        "PyYAML>=6.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.4.2",
            "pytest-asyncio>=1.2.0",
        ],
    },
    python_requires=">=3.10",
    entry_points={
        'console_scripts': [
            'ddpchat=ddpclient.ddp_cli:main',
        ],
    },
)
