# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Archon - Workflow Versioning and Pipeline Core"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="archon-workflow",
    version="1.0.0",
    author="Ilya Makarov",
    author_email="",
    description="Versioning, branching, merging and CI pipelines for agent workflow specs",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/kurokie1337/archon",
    packages=find_packages(exclude=["tests*", "examples*", "docs*"]),
    py_modules=["cli"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: Other/Proprietary License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Software Development :: Version Control",
    ],
    python_requires=">=3.10",
    install_requires=[
        # Core - Required
        "click>=8.1.7",
        "pyyaml>=6.0.1",
        "httpx>=0.25.2",
        "pydantic>=2.5.2",
        "jinja2>=3.1.2",
    ],
    extras_require={
        "server": [
            "fastapi>=0.104.1",
            "uvicorn>=0.24.0",
        ],
        "dev": [
            "pytest>=7.4.3",
            "pytest-asyncio>=0.21.1",
            "pytest-cov>=4.1.0",
            "fastapi>=0.104.1",
            "black>=23.12.1",
            "ruff>=0.1.6",
            "mypy>=1.7.1",
        ],
        "full": [
            # All optional dependencies
            "fastapi>=0.104.1",
            "uvicorn>=0.24.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "archon=cli:cli",
        ],
    },
    include_package_data=True,
    package_data={
        "archon": ["py.typed"],
    },
    zip_safe=False,
    keywords=[
        "workflow",
        "versioning",
        "merge",
        "cicd",
        "pipeline",
        "dag",
        "agents",
    ],
    project_urls={
        "Bug Reports": "https://github.com/kurokie1337/archon/issues",
        "Source": "https://github.com/kurokie1337/archon",
    },
)
