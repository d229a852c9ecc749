from setuptools import setup, find_packages

setup(
    name="dngSync",
    version="0.3.0",
    description="Baseline-by-baseline sync of a DOORS Next requirements project into MMS",
    packages=find_packages(include=["dngSync", "dngSync.*", "api_clients", "api_clients.*"]),
    python_requires=">=3.11",
    install_requires=[
        "click>=8.0",
        "requests>=2.31.0",
        "httpx>=0.25",
        "tenacity>=8.2",
        "rdflib>=7.0",
        "PyYAML>=6.0",
        "keyring>=24.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-socket>=0.6",
            "requests-mock>=1.11",
        ],
    },
    entry_points={
        "console_scripts": ["dngSync=dngSync.cli:main"],
    },
    license="MIT",
)
