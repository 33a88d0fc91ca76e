# setup.py
from setuptools import setup, find_packages

setup(
    name="subnet_amm",
    version="0.1.0",
    packages=find_packages(include=["subnet_amm", "subnet_amm.*"]),
    python_requires=">=3.9",
    install_requires=[
        "msgpack",             # pool records
        "plyvel",              # LevelDB store
        "cryptography",        # swap order signatures
        "pycryptodome",        # keccak pool addresses
        "prometheus_client",   # metrics
        "psutil",              # monitoring
    ],
    extras_require={
        "test": ["pytest", "requests"],
    },
    entry_points={
        "console_scripts": [
            "subnet-amm=subnet_amm.cli:main",
        ],
    },
)
