"""
tokensencoder — Setup Script
============================
Installs tokensencoder as a local editable package so that all internal
imports (e.g. `from tokensencoder.builder import build_model`) work
seamlessly from any script or notebook.

Usage:
    cd /path/to/tokensencoder
    pip install -e .
"""

from setuptools import setup, find_packages

setup(
    name="tokensencoder",
    version="0.1.0",
    description=(
        "tokensencoder: composable forward/backward encoders that turn the "
        "tokens of a sentence into dense vectors"
    ),
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "torch>=2.1.0",
        "safetensors[torch]>=0.4.0",
        "tqdm>=4.65.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": ["pytest>=7.0"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Text Processing :: Linguistic",
    ],
)
