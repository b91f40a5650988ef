from setuptools import setup, find_packages

setup(
    name="sutlink",
    version="0.1.0",
    description="Run commands and copy files on systems under test over SSH",
    author="",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.8",
    install_requires=[
        "paramiko>=3.4.0,<5",
        "pyyaml>=6.0.1",
        "click>=8.1.7",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "sutlink=sutlink.cli:main",
        ],
    },
    include_package_data=True,
)
