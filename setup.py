"""
Setup script for cadence-srs.

Cadence decides when each learning item should next be reviewed. FSRS
spaced-repetition scheduling is conditioned on three behavioural signals
inferred from recent practice:

1. Flow - moment-to-moment engagement
2. Momentum & Confidence - emotional trend and per-topic mastery
3. Temporal Intelligence - circadian profile and cognitive load

The 'cadence' command replays recorded attempts and schedules single cards.
"""

from setuptools import find_packages, setup

setup(
    name="cadence-srs",
    version="1.0.0",
    description="Adaptive spaced-repetition scheduling driven by flow, confidence and timing",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["cadence", "cadence.*"]),
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "cadence=cadence.cli.cadence_cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning spaced-repetition fsrs scheduling education",
)
