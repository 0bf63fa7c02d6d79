import setuptools

with open("README.rst", "r", encoding="utf-8") as fh:
    long_description = fh.read()

version = "0.1.0"

setuptools.setup(
    name="kraken-cli",
    version=version,
    description="Kraken REST API client",
    long_description=long_description,
    long_description_content_type="text/x-rst",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    packages=setuptools.find_packages(where=".", include=["krakencli", "krakencli.*"]),
    install_requires=[
        "numpy",
        "pandas",
        "requests",
        "sqlalchemy",
        "progress",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.8",
)
