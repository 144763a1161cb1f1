"""
Build script for menta-bench.

Pure Python package. The llama.cpp backend is an optional extra:
    pip install -e ".[llama]"

Development install with test tooling:
    pip install -e ".[test]"
"""

from setuptools import setup

setup(
    name="menta-bench",
    version="0.1.0",
    description="On-device mental-health classification benchmark for local LLMs",
    python_requires=">=3.10",
    packages=["menta_bench", "menta_bench.memory"],
    install_requires=[
        "numpy>=1.24",
        "psutil>=5.9",
        "click>=8.0",
    ],
    extras_require={
        "llama": ["llama-cpp-python>=0.2.50"],
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "menta-bench=menta_bench.cli:main",
        ],
    },
)
