import setuptools


with open('README.md', 'r') as fh:
    long_description = fh.read()

setuptools.setup(
    name="eventlens",
    version="0.4.0",
    description="Parallel scans and continuous streams over event-sourced journals.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=("tests",)),
    python_requires=">=3.9",
    classifiers=(
        "Programming Language :: Python :: 3",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries",
        "Topic :: System :: Distributed Computing",
    ),
    install_requires=[
        "PyYAML>=6.0",
        "SQLAlchemy>=2.0",
        "websockets>=13.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
)
