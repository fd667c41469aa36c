from setuptools import setup, find_packages

setup(
    name="weatherproxy",
    version="0.1.0",
    packages=find_packages(include=["weatherproxy", "weatherproxy.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "uvicorn",
        "httpx",
        "pydantic>=2",
        "pydantic-settings>=2.7",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "respx",
        ],
    },
)
