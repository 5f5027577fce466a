from pathlib import Path
from setuptools import setup, find_packages


def parse_requirements(path: str) -> list[str]:
    """Read requirements from the given file."""
    lines = Path(path).read_text().splitlines()
    reqs = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        reqs.append(line)
    return reqs

setup(
    name="promptkeeper",
    version="0.1.0",
    author="PromptKeeper Contributors",
    description="Versioned prompt management: projects, prompt lineages with semantic versions, history, diffs, import/export and LLM test calls.",
    long_description=open('README.md').read(),
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(include=["promptkeeper", "promptkeeper.*"]),
    install_requires=parse_requirements("requirements.txt"),
    extras_require={
        "test": ["pytest"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Application Frameworks",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires='>=3.9',
    entry_points={
        "console_scripts": [
            "promptkeeper=promptkeeper.cli:main",
        ],
    },
)
