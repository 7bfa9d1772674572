"""Setup configuration for kv-checkpoint package."""

from setuptools import setup, find_packages

setup(
    name="kv-checkpoint",
    version="0.1.0",
    description="Thread-scoped checkpoint store over capability-declared key-value backends",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0.0",
        "python-dotenv>=1.0.0",
        "redis[hiredis]>=5.0.1",
        "langgraph-checkpoint>=2.0.0",
        "langchain-core>=0.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.11.0",
            "ruff>=0.1.0",
            "mypy>=1.5.0",
            "black>=23.0.0",
        ],
    },
)
