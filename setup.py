#!/usr/bin/env python
"""
Setup script for the breakout analysis package.
"""

from setuptools import setup, find_packages

# Core dependencies required for the package
requirements = [
    "pandas>=1.3.0",
    "numpy>=1.20.0",
    "scipy>=1.7.0",
    "jinja2>=2.11.0",
    "pyyaml>=5.1.0",
]

setup(
    name="breakout_package",
    version="0.1.0",
    packages=find_packages(include=["breakout_package", "breakout_package.*"]),
    install_requires=requirements,
    extras_require={
        "dev": ["pytest>=6.0.0", "pytest-cov>=2.10.0", "black>=20.8b1"],
    },
    entry_points={
        "console_scripts": [
            "breakout-tools=breakout_package.cli:main",
        ],
    },
    description="Contribution and comparison analysis for interactive data exploration",
    author="Analytics Team",
    author_email="analytics@example.com",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Programming Language :: Python :: 3",
    ],
    python_requires=">=3.8",
    include_package_data=True,
)
