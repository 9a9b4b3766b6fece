#!/usr/bin/env python3
"""
Setup script for the topic broker client adapter and development server
"""

from setuptools import setup, find_packages

setup(
    name="framebroker",
    version="0.1.0",
    description="[topic][payload] WebSocket broker client with topic-filtered dispatch",
    packages=find_packages(include=["broker_client*", "broker_server*", "broker_shared*"]),
    install_requires=[
        "websockets>=15.0",
        "click>=8.1.7",
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
            'broker-server=broker_server.server:main',
            'broker-client=broker_client.broker_cli:main',
        ],
    },
)
