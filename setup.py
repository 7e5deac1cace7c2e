from setuptools import find_packages, setup

setup(
    name="homeslice",
    version="0.1.0",
    packages=find_packages(include=["homeslice", "homeslice.*"]),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2",
        "cryptography",
        "websockets>=13",
        "click",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
        ],
    },
    entry_points={
        "console_scripts": [
            "homeslice=homeslice.cli:cli",
        ],
    },
)
