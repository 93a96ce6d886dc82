#!/usr/bin/env python3
"""
Setup script for smimemailer.

Install with `pip install .` or `pip install -e '.[dev]'` for development.
"""

import sys

if sys.version_info < (3, 11):
    sys.exit("Error: smimemailer requires Python 3.11 or higher.")

try:
    from setuptools import setup
except ImportError:
    sys.exit("Error: setuptools is required. Install it with: pip install setuptools")

import re
from pathlib import Path

# Read version from __version__.py for consistency
version_file = Path(__file__).parent / "src" / "smimemailer" / "__version__.py"
version_content = version_file.read_text(encoding="utf-8")
version_match = re.search(r'^__version__\s*=\s*["\']([^"\']+)["\']', version_content, re.M)
version = version_match.group(1) if version_match else "0.1.0"

# Read long description from README if available
readme_path = Path(__file__).parent / "README.md"
if readme_path.exists():
    long_description = readme_path.read_text(encoding="utf-8")
    long_description_content_type = "text/markdown"
else:
    long_description = "S/MIME signing and encryption for outgoing email"
    long_description_content_type = "text/plain"

# Core dependencies
install_requires = [
    "cryptography>=45.0.0",
    "asn1crypto>=1.5.0",
    "aiosmtplib>=3.0.0",
    "pydantic>=2.5.0",
    "pydantic-settings>=2.1.0",
]

# Test and development dependencies
extras_require = {
    "test": [
        "pytest>=7.4.0",
        "pytest-cov>=4.1.0",
    ],
    "dev": [
        "pytest>=7.4.0",
        "pytest-cov>=4.1.0",
        "black>=23.0.0",
        "flake8>=6.1.0",
        "mypy>=1.7.0",
    ],
}

setup(
    name="smimemailer",
    version=version,
    description="S/MIME signing and encryption for outgoing email",
    long_description=long_description,
    long_description_content_type=long_description_content_type,
    license="MIT",
    python_requires=">=3.11",
    packages=["smimemailer"],
    package_dir={"": "src"},
    install_requires=install_requires,
    extras_require=extras_require,
    entry_points={
        "console_scripts": [
            "smimemailer=smimemailer.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications :: Email",
        "Topic :: Security :: Cryptography",
    ],
    keywords=["email", "smime", "pkcs7", "cms", "encryption", "signing", "smtp"],
)
