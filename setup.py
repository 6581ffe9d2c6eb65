#!/usr/bin/env python

from setuptools import setup, find_packages

with open('skvna/__init__.py') as fid:
    for line in fid:
        if line.startswith('__version__'):
            VERSION = line.strip().split()[-1][1:-1]
            break

LONG_DESCRIPTION = """
    scikit-vna computes the systematic error terms of vector network analyzers
    from measurements of calibration standards, implemented in the Python
    programming language.
"""
setup(name='scikit-vna',
    version=VERSION,
    license='new BSD',
    description='Vector network analyzer error term calibration',
    long_description=LONG_DESCRIPTION,
    packages=find_packages(include=['skvna', 'skvna.*']),
    python_requires='>=3.8',
    install_requires = [
        'numpy',
        'scipy',
        ],
    extras_require={
        'test': ['pytest'],
        },
    package_dir={'skvna':'skvna'},
    include_package_data = True,
    )
