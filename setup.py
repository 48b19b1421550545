from setuptools import setup, find_packages

setup(
    name="apptemplate-controller",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "kubernetes>=28.1.0",
        "PyYAML>=6.0",
        "click>=8.1.0",
        "rich>=13.7.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "apptemplate-controller=apptemplate_controller.cli:main",
        ],
    },
    description="Kubernetes controller that renders AppTemplate bundles and applies them",
    python_requires=">=3.9",
)
