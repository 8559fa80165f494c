from setuptools import setup, find_packages

setup(
    name="agentflow",
    version="0.1.0",
    description="Multi-step workflow execution engine for tool, LLM and script steps",
    author="Agentflow Team",
    packages=find_packages(include=["agentflow", "agentflow.*", "config", "config.*"]),
    install_requires=[
        "pydantic>=2.0.0",
        "psutil>=5.9.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "black>=22.0.0",
            "isort>=5.0.0",
        ],
    },
    python_requires=">=3.11",
)
