# setup.py
from setuptools import setup, find_packages

setup(
    name="finpilot",
    version="0.1.0",
    description="Parse bank and credit card statements, classify transactions and spot recurring expenses",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "click>=7.0",
        "pyyaml>=5.3",
        "pandas>=1.1",
        "openpyxl>=3.0",
        "xlrd>=2.0.1",
        "python-dotenv>=0.19",
        "huggingface_hub>=0.20",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "finpilot=finpilot.cli:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
