from setuptools import setup, find_packages

setup(
    name="ccas",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={
        "ccas.reporting": ["templates/*.j2"],
    },
    python_requires=">=3.11",
    install_requires=[
        # Core dependencies
        "sqlalchemy>=2.0",
        "alembic",
        "pydantic>=2",

        # Reporting
        "markdown",
        "jinja2",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "ccas=ccas.cli:main",
        ],
    },
)
