from setuptools import setup, find_packages

setup(
    name="bookmark_sync",
    version="0.1.0",
    packages=find_packages(include=["bookmark_sync", "bookmark_sync.*"]),
    install_requires=[
        "httpx>=0.25.0",
        "beautifulsoup4>=4.12.0",
        "openai>=1.3.0",
        "python-dotenv>=1.0.0",
        "aiofiles>=23.2.0",
        "pydantic>=2.0.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    author="Your Name",
    author_email="your.email@example.com",
    description="Синхронизация закладок браузера с GitHub Gist и их обогащение описаниями от LLM",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/bookmark_sync",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    entry_points={
        "console_scripts": [
            "bookmark-sync=bookmark_sync.main:main",
        ],
    },
)
