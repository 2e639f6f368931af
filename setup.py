"""
setup.py for the beliefscp Python package.

The package sources live under ``python/``; install from the repository root:
    pip install -e .

Development tools (tests, formatting, type checks):
    pip install -e ".[dev]"
"""

from setuptools import find_packages, setup

setup(
    name="beliefscp",
    version="0.1.0",
    description="Belief-space trajectory optimization with penalty SCP and trust regions",
    package_dir={"": "python"},
    packages=find_packages(where="python"),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.20",
        "scipy>=1.7",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
            "hypothesis>=6.0",
            "black>=23.0",
            "ruff>=0.1.0",
            "mypy>=1.0",
        ],
    },
)
