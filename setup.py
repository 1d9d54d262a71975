"""
Setup script for pubmed_gateway package.

Install with: pip install .
Or for development: pip install -e ".[dev]"
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

# Read version from __version__.py
version = {}
with open(Path(__file__).parent / "pubmed_gateway" / "__version__.py") as f:
    exec(f.read(), version)

setup(
    name="pubmed_gateway",
    version=version["__version__"],
    description="Cached PubMed metadata gateway with open-access full text retrieval",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Your Name",
    author_email="your.email@example.com",
    url="https://github.com/yourusername/pubmed-gateway",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={
        'pubmed_gateway': ['config.yaml', 'py.typed'],
    },
    python_requires=">=3.8",
    install_requires=[
        "requests>=2.25.0",
        "PyYAML>=5.4.0",
        "tqdm>=4.60.0",  # Progress bars for batch downloads
        "beautifulsoup4>=4.9.0",  # Landing page scraping
        "bibtexparser>=1.4.0,<2",  # BibTeX export
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "pubmed-gateway=pubmed_gateway.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Information Analysis",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
