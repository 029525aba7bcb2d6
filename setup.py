from setuptools import setup, find_packages
setup(
    name="parcel_signals",
    version="0.1.0",
    packages=find_packages("src"),
    package_dir={"": "src"},
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "requests>=2.28",
        "shapely>=2.0",
        "fastapi>=0.100,<0.137",
        "pydantic>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "httpx>=0.24",
        ],
    },
    entry_points={
        'console_scripts': [
            'parcel_signals=parcel_signals.__main__:main'
        ]
    }
)
