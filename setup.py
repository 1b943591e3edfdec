from setuptools import setup, find_packages


setup(
    name="m8nexus",
    version="0.1",
    packages=find_packages(include=["m8nexus", "m8nexus.*"]),
    description="Content-addressed containers for compressed markdown, text and memory bindings.",
    author="vercingetorx",
    python_requires=">=3.8",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "argon2-cffi>=23.1.0",
    ],
    extras_require={
        "zstd": ["zstandard>=0.22"],
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": [
            "m8nexus=m8nexus.cli:main",
        ]
    },
)
