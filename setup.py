"""
Setup script for order_engine package.

Pure Python install; packages live under src/python.
"""

from setuptools import find_packages, setup

setup(
    name="dex-order-engine",
    version="1.0.0",
    description="DEX swap order execution engine with routing, retries and live status streaming",
    package_dir={"": "src/python"},
    packages=find_packages(where="src/python"),
    python_requires=">=3.9",
    install_requires=[
        "sqlalchemy>=2.0",
        "numpy>=1.24",
        "pydantic>=2.0",
        "fastapi>=0.100",
        "uvicorn>=0.23",
        "redis>=5.0.1",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "httpx>=0.24",
        ],
        "postgres": [
            "psycopg2-binary>=2.9",
        ],
    },
    entry_points={
        "console_scripts": [
            "order-engine=order_engine.cli:main",
        ],
    },
    zip_safe=False,
)
