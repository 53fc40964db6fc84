"""Setup configuration for labelopt package."""

from setuptools import setup, find_packages

setup(
    name="labelopt",
    version="1.0.0",
    description="Label budget and tCPA reallocation engine for ad campaign dashboards",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="labelopt Team",
    python_requires=">=3.9",
    packages=find_packages(where=".", include=["labelopt*"]),
    package_dir={"": "."},
    install_requires=[
        "python-dotenv==1.0.1",
        "PyYAML>=6.0.2",
        "pytz>=2020.1",
        "pandas>=2.2.2",
        "openpyxl==3.1.5",
        "SQLAlchemy>=2.0.35",
        "prometheus-client==0.20.0",
        "jsonschema==4.23.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "labelopt=labelopt.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
