from setuptools import setup, find_packages
from pathlib import Path

# Read the contents of README.md for long description
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8')

setup(
    name="sangerconsensus",
    version="0.1.0",

    # Descriptions
    description="Consensus sequences, summaries and guide trees from groups of Sanger reads",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # License
    license="MIT",

    # Package discovery
    packages=find_packages(exclude=["tests", "tests.*", "docs", "examples"]),

    # Python version requirement
    python_requires=">=3.8",

    # Core dependencies
    install_requires=[
        "biopython>=1.79",
        "pandas>=1.3.0",
        "numpy>=1.21.0",
        "matplotlib>=3.4.0",
        "seaborn>=0.11.0",
    ],

    # Optional dependencies for specific features
    extras_require={
        "yaml": [
            "pyyaml>=5.4",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=3.0.0",
            "pyyaml>=5.4",
        ],
    },

    # Command-line interface
    entry_points={
        'console_scripts': [
            'sangerconsensus=sangerconsensus.cli:main',
        ],
    },

    # PyPI classifiers
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX :: Linux",
        "Operating System :: MacOS",
        "Natural Language :: English",
    ],

    # Keywords for PyPI search
    keywords=[
        "bioinformatics",
        "Sanger sequencing",
        "consensus sequence",
        "DNA barcoding",
        "ab1",
        "chromatogram",
    ],

    zip_safe=False,
)
