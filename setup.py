from setuptools import setup, find_packages

setup(
    name="babyfoon",
    version="0.1.0",
    description="Live audio baby monitor with a chunked storage fallback",
    author="",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.21.0",
        "rich>=12.5.0",
        "click>=8.1.0",
        "pydantic>=2.0.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
        "aiohttp>=3.9.0",
    ],
    extras_require={
        "audio": [
            "pyaudio>=0.2.11",
        ],
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "babyfoon=babyfoon.main:main",
        ],
    },
)
