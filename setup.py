from setuptools import setup, find_packages

setup(
    name="nexus-scheduler",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "web3>=6.0.0",
        "python-dotenv>=1.0.0",
        "aiohttp>=3.9.0",
        "eth-account>=0.11.0",
        "click>=8.1.0",
        "rich>=13.0.0",
        "schedule>=1.2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "nexus-scheduler=nexus_scheduler.cli:main",
        ],
    },
    python_requires=">=3.10",
)
