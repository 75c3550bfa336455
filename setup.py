from setuptools import setup, find_packages


setup(
    name="warmpq",
    version="0.1",
    packages=find_packages(include=["warmpq", "warmpq.*"]),
    description="MPQ archive reader/writer for Warcraft III maps.",
    author="vercingetorx",
    install_requires=[
        "pycryptodomex>=3.23.0",
    ],
    entry_points={
        "console_scripts": [
            "warmpq=warmpq.cli:main",
        ]
    },
)
