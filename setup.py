"""
Obscura Setup Configuration
Static deobfuscation and crypto usage analysis for obfuscated JavaScript
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="obscura",
    version="1.0.0",
    author="BearWatchDev",
    author_email="BearWatchDev@pm.me",
    description="JavaScript deobfuscation pipeline and crypto usage detector",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Information Technology",
        "Topic :: Security",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: POSIX :: Linux",
    ],
    python_requires=">=3.8",
    install_requires=[
        "esprima>=4.0.1",
        "jsbeautifier>=1.14.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "api": ["fastapi>=0.104.0", "uvicorn>=0.24.0", "pydantic>=1.10"],
        "test": ["pytest>=7.0", "httpx>=0.24.0", "fastapi>=0.104.0", "pydantic>=1.10"],
        "all": ["fastapi>=0.104.0", "uvicorn>=0.24.0", "pydantic>=1.10"],
    },
    entry_points={
        "console_scripts": [
            "obscura=obscura.cli:main",
        ],
    },
)
