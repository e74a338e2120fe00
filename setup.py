from setuptools import setup, find_packages
from pathlib import Path


def read_readme():
    this_directory = Path(__file__).parent
    readme_file = this_directory / 'README.md'
    if readme_file.exists():
        return readme_file.read_text(encoding='utf-8')
    return ""


def get_version():
    import re
    init_file = Path(__file__).parent / 'chainindex' / '__init__.py'
    if init_file.exists():
        match = re.search(r'__version__\s*=\s*["\']([^"\']+)["\']', init_file.read_text())
        if match:
            return match.group(1)
    return "0.1.0"


setup(
    name="chainindex",
    version=get_version(),
    description="Webhook driven blockchain indexer writing into tenant owned PostgreSQL databases.",
    long_description=read_readme(),
    long_description_content_type='text/markdown',
    packages=find_packages(include=["chainindex", "chainindex.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "pydantic>=2.5",
        "psycopg[binary]>=3.1.18",
        "psycopg-pool>=3.2",
        "httpx>=0.27",
        "typer>=0.12",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
    ],
    keywords="solana indexer webhook postgres fastapi",
    entry_points={
        'console_scripts': [
            'chainindex=chainindex.cli.ctl:cli_app',
        ],
    },
)
