from setuptools import setup, find_packages

setup(
    name="genbi",
    version="0.1.0",
    description="Natural language to read-only SQL with chart recommendations and saved queries",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "langchain-community>=0.0.20",
        "langchain-core>=0.1.0",
        "sqlparse>=0.4.4",
        "pandas>=2.0.0",
        "sqlalchemy>=2.0.0",
        "pymysql>=1.0.0",
        "psycopg2-binary>=2.9.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.20.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv>=1.0.0",
        "click>=8.0.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.24.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "genbi=genbi.cli:main",
        ],
    },
)
