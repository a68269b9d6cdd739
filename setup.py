from setuptools import setup, find_packages

setup(
    name="relaychat",
    version="1.0.0",
    description="Line-based TCP chat relay with unique pseudonyms",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",

    # automatically find packages
    packages=find_packages(exclude=["tests", "tests.*"]),

    # no runtime dependencies (only uses standard library)
    install_requires = [],

    # Development dependencies
    extras_require = {
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
        ],
    },

    # Python version requirement
    python_requires=">=3.9",

    # Create command-line tools
    entry_points={
        "console_scripts": [
            "relaychat-server=relay_server.server:main",
            "relaychat-client=relay_client.client:main",
        ],
    },

    # Project classification
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Communications :: Chat",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
