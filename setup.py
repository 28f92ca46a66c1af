"""
EMA Hunter
EMA trend-following trading assistant for USDT perpetual swaps
"""

from setuptools import setup, find_packages

setup(
    name="ema-hunter",
    version="0.1.0",
    description="EMA trend-following perpetual futures assistant with paper trading and backtesting",
    python_requires=">=3.10",
    packages=find_packages(include=["ema_hunter", "ema_hunter.*"]),
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#")
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
            "isort>=5.12.0",
        ],
    },
)
