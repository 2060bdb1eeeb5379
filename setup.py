from setuptools import setup

setup(
    name="pvfilt",
    version="0.1.0",
    description="Chart the progress of commands that print done/total",
    packages=["pvfilt"],
    python_requires=">=3.10",
    install_requires=["numpy", "tracerite"],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["pvfilt = pvfilt.cli:main"]},
)
