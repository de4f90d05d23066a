from setuptools import setup, find_packages
setup(
    name="parcel_tiles",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "shapely>=2.0",
        "numpy",
        "pyproj>=3.4",
        "mapbox-vector-tile>=2.0",
        "fastapi>=0.100",
        "pydantic>=2",
    ],
    extras_require={
        "test": ["pytest", "httpx"],
    },
    entry_points={
        'console_scripts': [
            'parcel_tiles=parcel_tiles.__main__:main'
        ]
    }
)
