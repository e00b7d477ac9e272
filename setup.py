from setuptools import find_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="remote-print",
    version="0.1.22",
    author="Remote Print Developers",
    description="Print files on a remote machine over QUIC + TLS",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["remote_print", "remote_print.*"]),
    include_package_data=True,
    install_requires=[
        "aioquic >= 1.0",
        "argon2-cffi >= 21.2",
        "cryptography >= 39.0",
    ],
    extras_require={
        "dev": [
            "pytest >= 7.0",
            "pytest-asyncio >= 0.21",
            "pytest-cov >= 5.0",
            "flake8 >= 7.0",
            "black >= 24.0",
            "isort >= 5.13",
        ],
        "test": [
            "pytest >= 7.0",
            "pytest-asyncio >= 0.21",
            "pytest-cov >= 5.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "remote-print-server = remote_print:main",
            "remote-print = remote_print.client:main",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX",
    ],
)
