from setuptools import setup, find_packages

setup(
    name="lexicon-relay",
    version="1.0.0",
    packages=find_packages(include=["relay", "relay.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "starlette>=0.36",
        "uvicorn>=0.27",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "redis>=5.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "httpx>=0.26",
            "fakeredis[lua]>=2.20",
        ],
    },
)
