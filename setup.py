from setuptools import setup, find_namespace_packages

setup(
    name="c2s",
    version="0.1.0",
    description="Convert Compose projects into systemd units running docker or podman containers",
    packages=find_namespace_packages(where="src", include=["c2s", "c2s.*"]),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "click>=8.0",
        "python-dotenv>=1.0",
        "jinja2>=3.0",
        "rich>=13.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "c2s=c2s.CLI.main:main",
        ],
    },
)
