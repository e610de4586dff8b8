from os import path

from setuptools import setup

this_dir = path.abspath(path.dirname(__file__))
with open(path.join(this_dir, "README.md")) as f:
    long_description = f.read()

setup(
    name="FastRepo",
    description="FastRepo - repository and unit of work patterns on top of SQLAlchemy",
    long_description=long_description,
    long_description_content_type="text/markdown",
    version="0.1",
    license="MIT",
    packages=["fastrepo", "fastrepo.test", "fastrepo.core"],
    package_data={
        "fastrepo": ["py.typed"],
        "fastrepo.core": ["py.typed"],
        "fastrepo.test": ["py.typed"],
    },
    keywords=["fastrepo", "repository", "unit of work", "sqlalchemy"],
    python_requires=">=3.9",
    install_requires=[
        "sqlalchemy[asyncio]>=2.0",
        "uvicorn",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "aiosqlite",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Database",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.9",
    ],
)
