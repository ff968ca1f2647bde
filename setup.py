from setuptools import find_packages, setup

setup(
    name="gbmtrain",
    version="0.1.0",
    description="Gradient boosted tree training driver with parallel chunked loading",
    packages=find_packages(include=["gbmtrain", "gbmtrain.*"]),
    python_requires=">=3.10",
    install_requires=[
        "numpy",
        "torch",
        "scikit-learn",
    ],
    extras_require={
        "test": ["pytest", "pandas"],
    },
    entry_points={
        "console_scripts": ["gbmtrain=gbmtrain.cli:main"],
    },
)
