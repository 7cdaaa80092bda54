"""
Setup script for chainalert package

Handles package dependencies and installation configuration.
"""

from setuptools import setup, find_packages

setup(
    name="chainalert",
    version="0.1",
    description="Interaction-scoped ERC20 transfer alerts from webhooks and block polling",
    author="Neal Zhu",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "web3>=7.0.0",
        "pydantic>=2.0.0",
        "loguru>=0.7.0",
        "tomli>=2.0.0",
        "hexbytes>=0.3.0",
        "python-telegram-bot>=20.8",
        "redis>=5.0.1",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "aiohttp>=3.8.0",
        "httpx>=0.24.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "tomli-w>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "chainalert-replay=chainalert.tools.replay:main",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
