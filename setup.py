"""Setup script for slotwatch."""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
  long_description = fh.read()

setup(
  name="slotwatch",
  version="0.1.0",
  author="slotwatch Contributors",
  description="Client for paid x402/ws402 live Solana market-data streams",
  long_description=long_description,
  long_description_content_type="text/markdown",
  packages=find_packages(exclude=["tests", "tests.*"]),
  py_modules=["slotwatch_cli"],
  python_requires=">=3.11",
  install_requires=[
    "httpx>=0.25.0",
    "websockets>=12.0",
    "rich>=13.0.0",
    "pydantic>=2.0",
  ],
  extras_require={
    "test": [
      "pytest>=7.0",
      "pytest-asyncio>=0.21",
    ],
  },
  entry_points={
    "console_scripts": [
      "slotwatch=slotwatch_cli:main",
    ],
  },
  classifiers=[
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Topic :: Software Development :: Libraries",
    "License :: OSI Approved :: Apache Software License",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
  ],
)
