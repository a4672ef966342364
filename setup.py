"""
Packaging for StakeLedger: the ``stakeledger_core`` library plus the
``run_ledger`` service script, exposed as the ``stakeledger`` command.

    pip install -e .            # library + service
    pip install -e ".[dev]"     # adds pytest, coverage, mypy and ruff
"""

from pathlib import Path

from setuptools import find_packages, setup

README = Path(__file__).resolve().parent / "README.md"

RUNTIME = [
    "aiohttp>=3.9.0,<4",                      # HTTP service and test client
    "tomli>=2.0.0,<3;python_version<'3.11'",  # TOML config before tomllib
]

DEV = [
    "pytest>=7.0",
    "pytest-asyncio>=0.21",
    "pytest-cov>=4.0",
    "mypy>=1.5",
    "ruff>=0.1.0",
]

setup(
    name="stakeledger",
    version="1.0.0",
    description="Single-token staking ledger with daily rewards, referral bonuses and atomic operations",
    long_description=README.read_text(encoding="utf-8") if README.exists() else "",
    long_description_content_type="text/markdown",
    license="MIT",
    author="StakeLedger Contributors",
    python_requires=">=3.10",
    packages=find_packages(include=["stakeledger_core", "stakeledger_core.*"]),
    py_modules=["run_ledger"],
    install_requires=RUNTIME,
    extras_require={"dev": DEV},
    entry_points={"console_scripts": ["stakeledger=run_ledger:main_sync"]},
    classifiers=[
        "Development Status :: 4 - Beta",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3 :: Only",
        "Framework :: AsyncIO",
        "Framework :: aiohttp",
        "Topic :: Office/Business :: Financial :: Accounting",
    ],
)
