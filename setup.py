from setuptools import setup, find_packages

setup(
    name="wip-commit",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "setuptools>=58.0.0",
        "openai>=1.0.0",
        "python-dotenv>=0.19.0",
        "keyring>=23.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        'console_scripts': [
            'wip-commit=wip_commit.cli:main',
        ],
    },
    author="zero0043",
    description="Stop-hook review and auto-commit of AI assistant work in progress",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    python_requires=">=3.8",
)
