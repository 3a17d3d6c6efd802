from setuptools import setup, find_packages

setup(
    name="zonn_bridge",
    version="0.1.0",
    description="Media player automation bridge for the Zonn focus timer",
    author="Soren Frederiksen",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"zonn_bridge.gateway": ["templates/*.html"]},
    python_requires=">=3.10",
    install_requires=[
        "click>=8.0.0",
        "fastapi>=0.110.0",
        "uvicorn[standard]>=0.27.0",
        "jinja2>=3.1.0",
        "websockets>=12.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-asyncio>=0.23.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "zonn-bridge=zonn_bridge.service:main",
        ],
    },
)
